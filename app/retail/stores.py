from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import Flask, current_app

from app.retail.audit import AuditQueue, audit_queue_from_config
from app.retail.modules.customers.repository import CustomerRepository, customer_repository_from_config
from app.retail.storage import LogArchive, PhotoStore, storage_from_config


def new_token() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Stores:
    """
    The four collaborators behind the customer pages plus the id/clock functions
    used on the creation path. Built once per app; tests pass their own.
    """

    customers: CustomerRepository
    photos: PhotoStore
    audit: AuditQueue
    archive: LogArchive
    new_id: Callable[[], str] = field(default=new_token)
    clock: Callable[[], datetime] = field(default=utcnow)

    def ensure_ready(self) -> None:
        self.customers.ensure_ready()
        self.photos.ensure_ready()
        self.audit.ensure_ready()
        self.archive.ensure_ready()


def stores_from_config(app: Flask) -> Stores:
    config = app.config
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    sm = None
    if backend in ("local", "s3"):
        from app.retail.db import init_db

        sm = init_db(app)
    # The Azure file share is dedicated to logs; everywhere else logs sit beside photos.
    log_prefix = "" if backend == "azure" else "logs/"
    return Stores(
        customers=customer_repository_from_config(config, sm),
        photos=PhotoStore(storage_from_config(config, area="photos")),
        audit=audit_queue_from_config(config, sm),
        archive=LogArchive(storage_from_config(config, area="logs"), prefix=log_prefix),
    )


def get_stores() -> Stores:
    return current_app.extensions["retail_stores"]
