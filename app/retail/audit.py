"""
Audit queue: an append-only stream of text messages describing customer mutations.

Sending is a best-effort post-commit step. `record_event` never raises for queue
failures; callers get an `AuditResult` they may log or flash, and the mutation that
preceded it stays committed.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from app.retail.db import session_scope
from app.retail.models import AuditMessageRow

if TYPE_CHECKING:
    from sqlalchemy.orm import sessionmaker

    from app.retail.modules.customers.models import Customer

logger = logging.getLogger(__name__)

ACTION_CUSTOMER_CREATED = "New Product Added"
ACTION_CUSTOMER_UPDATED = "Customer Updated"
ACTION_CUSTOMER_DELETED = "Customer Deleted"

# Storage queues cap peek at 32 messages per call.
AZURE_PEEK_LIMIT = 32


@dataclass(frozen=True)
class LogMessage:
    message_id: str
    insertion_time: datetime
    message_text: str


@dataclass(frozen=True)
class AuditResult:
    ok: bool
    message_text: str
    error: str | None = None


class AuditQueue:
    def send(self, message_text: str) -> None:
        raise NotImplementedError

    def list(self) -> list[LogMessage]:
        raise NotImplementedError

    def ensure_ready(self) -> None:
        return None


@dataclass
class MemoryAuditQueue(AuditQueue):
    messages: list[LogMessage] = field(default_factory=list)

    def send(self, message_text: str) -> None:
        self.messages.append(
            LogMessage(
                message_id=uuid.uuid4().hex,
                insertion_time=datetime.now(timezone.utc),
                message_text=message_text,
            )
        )

    def list(self) -> list[LogMessage]:
        return list(self.messages)


class SqlAuditQueue(AuditQueue):
    def __init__(self, sm: "sessionmaker") -> None:
        self.sm = sm

    def send(self, message_text: str) -> None:
        with session_scope(self.sm) as s:
            s.add(AuditMessageRow(message_id=uuid.uuid4().hex, message_text=message_text))

    def list(self) -> list[LogMessage]:
        with session_scope(self.sm) as s:
            rows = s.query(AuditMessageRow).order_by(AuditMessageRow.seq.asc()).all()
            return [
                LogMessage(message_id=r.message_id, insertion_time=r.inserted_at, message_text=r.message_text)
                for r in rows
            ]

    def ensure_ready(self) -> None:
        engine = self.sm.kw["bind"]
        AuditMessageRow.__table__.create(bind=engine, checkfirst=True)


class AzureAuditQueue(AuditQueue):
    """
    Azure Queue Storage. Bodies travel base64 encoded (the SDK text policies do the
    encoding both ways); list() peeks, so reading the log never consumes it.
    """

    def __init__(self, queue_name: str, *, connection_string: str = "", account: str = "") -> None:
        self.queue_name = queue_name
        self.connection_string = connection_string
        self.account = account

    def _client(self):
        from app.retail.storage import StorageError, azure_credential

        try:
            from azure.storage.queue import (  # type: ignore
                QueueClient,
                TextBase64DecodePolicy,
                TextBase64EncodePolicy,
            )
        except Exception as e:  # pragma: no cover
            raise StorageError("azure-storage-queue required for Azure storage.") from e
        policies = {
            "message_encode_policy": TextBase64EncodePolicy(),
            "message_decode_policy": TextBase64DecodePolicy(),
        }
        if self.connection_string:
            return QueueClient.from_connection_string(self.connection_string, queue_name=self.queue_name, **policies)
        if not self.account:
            raise StorageError("AZURE_STORAGE_CONNECTION_STRING or AZURE_STORAGE_ACCOUNT must be set.")
        return QueueClient(
            account_url=f"https://{self.account}.queue.core.windows.net",
            queue_name=self.queue_name,
            credential=azure_credential(),
            **policies,
        )

    def send(self, message_text: str) -> None:
        response = self._client().send_message(message_text)
        logger.debug("Queued audit message id=%s queue=%s", response.get("id"), self.queue_name)

    def list(self) -> list[LogMessage]:
        out = [
            LogMessage(message_id=msg.id, insertion_time=msg.inserted_on, message_text=msg.content or "")
            for msg in self._client().peek_messages(max_messages=AZURE_PEEK_LIMIT)
        ]
        if len(out) >= AZURE_PEEK_LIMIT:
            logger.warning(
                "Audit queue %s returned the peek limit (%d messages); newer entries are not shown",
                self.queue_name,
                AZURE_PEEK_LIMIT,
            )
        return out

    def ensure_ready(self) -> None:
        from azure.core.exceptions import ResourceExistsError  # type: ignore

        try:
            self._client().create_queue()
            logger.info("Created queue: %s", self.queue_name)
        except ResourceExistsError:
            logger.debug("Queue already exists: %s", self.queue_name)


def build_audit_message(action: str, customer: "Customer", now: datetime) -> str:
    ts = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    body = {
        "Action": action,
        "TimeStamp": ts.isoformat().replace("+00:00", "Z"),
        "Details": {
            "PartitionKey": customer.partition_key,
            "RowKey": customer.row_key,
            "FirstName": customer.first_name,
            "LastName": customer.last_name,
            "Email": customer.email,
            "PhoneNumber": customer.phone_number,
        },
    }
    return json.dumps(body)


def record_event(queue: AuditQueue, *, action: str, customer: "Customer", now: datetime) -> AuditResult:
    """
    Append-only audit event helper. Best effort: queue errors are logged and reported, not raised.
    """
    text = build_audit_message(action, customer, now)
    try:
        queue.send(text)
    except Exception as e:
        logger.warning(
            "Audit message not queued (action=%s row_key=%s): %s",
            action,
            customer.row_key,
            e,
        )
        return AuditResult(ok=False, message_text=text, error=str(e))
    return AuditResult(ok=True, message_text=text)


def audit_queue_from_config(config: dict, sm: "sessionmaker | None" = None) -> AuditQueue:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "memory":
        return MemoryAuditQueue()
    if backend == "azure":
        return AzureAuditQueue(
            config.get("AZURE_AUDIT_QUEUE") or "customer-log",
            connection_string=(config.get("AZURE_STORAGE_CONNECTION_STRING") or "").strip(),
            account=(config.get("AZURE_STORAGE_ACCOUNT") or "").strip(),
        )
    if sm is None:
        raise ValueError("SQL audit queue needs a sessionmaker")
    return SqlAuditQueue(sm)
