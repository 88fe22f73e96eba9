from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from app.retail.audit import (
    ACTION_CUSTOMER_CREATED,
    ACTION_CUSTOMER_DELETED,
    ACTION_CUSTOMER_UPDATED,
    AuditResult,
    record_event,
)
from app.retail.modules.customers.models import CUSTOMER_PARTITION_KEY, Customer
from app.retail.modules.customers.utils import build_log_csv, is_image_filename, log_export_filename

if TYPE_CHECKING:
    from werkzeug.datastructures import FileStorage

    from app.retail.stores import Stores

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^[0-9+\-().\s]+$")

EDITABLE_FIELDS = ("first_name", "last_name", "email", "phone_number")


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


@dataclass(frozen=True)
class ExportResult:
    filename: str
    message_count: int
    ok: bool
    error: str | None = None


def has_upload(f: "FileStorage | None") -> bool:
    return bool(f is not None and f.filename)


def _clean(payload: dict[str, Any], key: str) -> str:
    return (payload.get(key) or "").strip()


def validate_customer_payload(
    payload: dict[str, Any],
    *,
    image: "FileStorage | None" = None,
    require_keys: bool = False,
) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if require_keys:
        if not _clean(payload, "partition_key"):
            errs.append(ValidationError("partition_key", "Partition key is required."))
        if not _clean(payload, "row_key"):
            errs.append(ValidationError("row_key", "Row key is required."))
    if not _clean(payload, "first_name"):
        errs.append(ValidationError("first_name", "First name is required."))
    if not _clean(payload, "last_name"):
        errs.append(ValidationError("last_name", "Last name is required."))

    email = _clean(payload, "email")
    if not email:
        errs.append(ValidationError("email", "Email is required."))
    elif not EMAIL_RE.match(email):
        errs.append(ValidationError("email", "Email address is not valid."))

    phone = _clean(payload, "phone_number")
    if not phone:
        errs.append(ValidationError("phone_number", "Phone number is required."))
    elif not PHONE_RE.match(phone):
        errs.append(ValidationError("phone_number", "Phone number may only contain digits, spaces and + - ( ) ."))

    if has_upload(image) and not is_image_filename(image.filename):
        errs.append(ValidationError("image", "Photo must be an image file."))
    return errs


def _upload_photo(stores: "Stores", image: "FileStorage") -> str:
    photo_id = stores.new_id()
    return stores.photos.upload(photo_id, image.stream, content_type=image.mimetype or None)


def create_customer(
    stores: "Stores",
    payload: dict[str, Any],
    image: "FileStorage | None" = None,
) -> tuple[Customer, AuditResult]:
    """
    Insert a new customer under the fixed partition with fresh row key / customer id.
    The photo goes up before the insert; the audit message follows it and cannot undo it.
    """
    customer = Customer(
        partition_key=CUSTOMER_PARTITION_KEY,
        row_key=stores.new_id(),
        customer_id=stores.new_id(),
        first_name=_clean(payload, "first_name"),
        last_name=_clean(payload, "last_name"),
        email=_clean(payload, "email"),
        phone_number=_clean(payload, "phone_number"),
    )
    if has_upload(image):
        customer.photo_url = _upload_photo(stores, image)

    stores.customers.insert(customer)
    logger.info("Customer created: %s/%s", customer.partition_key, customer.row_key)

    result = record_event(stores.audit, action=ACTION_CUSTOMER_CREATED, customer=customer, now=stores.clock())
    return customer, result


def update_customer(
    stores: "Stores",
    existing: Customer,
    payload: dict[str, Any],
    new_image: "FileStorage | None" = None,
) -> tuple[Customer, AuditResult]:
    """Copy the editable fields onto the stored record; identity and customer id never change."""
    for attr in EDITABLE_FIELDS:
        setattr(existing, attr, _clean(payload, attr))
    if has_upload(new_image):
        existing.photo_url = _upload_photo(stores, new_image)

    stores.customers.update(existing)
    logger.info("Customer updated: %s/%s", existing.partition_key, existing.row_key)

    result = record_event(stores.audit, action=ACTION_CUSTOMER_UPDATED, customer=existing, now=stores.clock())
    return existing, result


def delete_customer(stores: "Stores", customer: Customer) -> tuple[bool, AuditResult]:
    """
    Remove the photo (best effort), then the record, then queue the audit message.
    Returns (photo_deleted_cleanly, audit_result).
    """
    photo_ok = True
    if customer.photo_url:
        try:
            stores.photos.delete(customer.photo_url)
        except Exception as e:
            photo_ok = False
            logger.warning(
                "Photo delete failed for %s/%s (%s): %s",
                customer.partition_key,
                customer.row_key,
                customer.photo_url,
                e,
            )

    stores.customers.delete(customer.partition_key, customer.row_key)
    logger.info("Customer deleted: %s/%s", customer.partition_key, customer.row_key)

    result = record_event(stores.audit, action=ACTION_CUSTOMER_DELETED, customer=customer, now=stores.clock())
    return photo_ok, result


def export_log(stores: "Stores") -> ExportResult:
    """
    Snapshot the audit queue into a CSV in the log archive.
    Reading the queue may raise; the archive upload is best effort.
    """
    messages = stores.audit.list()
    filename = log_export_filename(stores.clock())
    data = build_log_csv(messages)
    try:
        stores.archive.upload_file(filename, data)
    except Exception as e:
        logger.warning("Log export upload failed (%s): %s", filename, e)
        return ExportResult(filename=filename, message_count=len(messages), ok=False, error=str(e))
    logger.info("Exported %d log messages to %s", len(messages), filename)
    return ExportResult(filename=filename, message_count=len(messages), ok=True)
