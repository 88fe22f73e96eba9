from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.retail.db import session_scope
from app.retail.modules.customers.models import Customer, CustomerRow

if TYPE_CHECKING:
    from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)


class CustomerNotFound(LookupError):
    pass


class CustomerRepository:
    """Record store keyed by (partition_key, row_key)."""

    def get(self, partition_key: str, row_key: str) -> Customer | None:
        raise NotImplementedError

    def list(self) -> list[Customer]:
        raise NotImplementedError

    def insert(self, customer: Customer) -> None:
        raise NotImplementedError

    def update(self, customer: Customer) -> None:
        raise NotImplementedError

    def delete(self, partition_key: str, row_key: str) -> None:
        raise NotImplementedError

    def ensure_ready(self) -> None:
        return None


@dataclass
class MemoryCustomerRepository(CustomerRepository):
    rows: dict[tuple[str, str], Customer] = field(default_factory=dict)

    def get(self, partition_key: str, row_key: str) -> Customer | None:
        c = self.rows.get((partition_key, row_key))
        # Hand out copies so callers mutate nothing until update().
        return replace(c) if c else None

    def list(self) -> list[Customer]:
        return [replace(c) for c in self.rows.values()]

    def insert(self, customer: Customer) -> None:
        key = (customer.partition_key, customer.row_key)
        if key in self.rows:
            raise ValueError(f"Customer already exists: {key}")
        self.rows[key] = replace(customer)

    def update(self, customer: Customer) -> None:
        key = (customer.partition_key, customer.row_key)
        if key not in self.rows:
            raise CustomerNotFound(key)
        self.rows[key] = replace(customer)

    def delete(self, partition_key: str, row_key: str) -> None:
        self.rows.pop((partition_key, row_key), None)


class SqlCustomerRepository(CustomerRepository):
    def __init__(self, sm: "sessionmaker") -> None:
        self.sm = sm

    def get(self, partition_key: str, row_key: str) -> Customer | None:
        with session_scope(self.sm) as s:
            row = s.get(CustomerRow, (partition_key, row_key))
            return row.to_customer() if row else None

    def list(self) -> list[Customer]:
        with session_scope(self.sm) as s:
            rows = s.query(CustomerRow).order_by(CustomerRow.created_at.asc(), CustomerRow.row_key.asc()).all()
            return [r.to_customer() for r in rows]

    def insert(self, customer: Customer) -> None:
        now = datetime.utcnow()
        with session_scope(self.sm) as s:
            s.add(
                CustomerRow(
                    partition_key=customer.partition_key,
                    row_key=customer.row_key,
                    customer_id=customer.customer_id,
                    first_name=customer.first_name,
                    last_name=customer.last_name,
                    email=customer.email,
                    phone_number=customer.phone_number,
                    photo_url=customer.photo_url,
                    created_at=now,
                    updated_at=now,
                )
            )

    def update(self, customer: Customer) -> None:
        with session_scope(self.sm) as s:
            row = s.get(CustomerRow, (customer.partition_key, customer.row_key))
            if not row:
                raise CustomerNotFound((customer.partition_key, customer.row_key))
            row.customer_id = customer.customer_id
            row.first_name = customer.first_name
            row.last_name = customer.last_name
            row.email = customer.email
            row.phone_number = customer.phone_number
            row.photo_url = customer.photo_url
            row.updated_at = datetime.utcnow()

    def delete(self, partition_key: str, row_key: str) -> None:
        with session_scope(self.sm) as s:
            row = s.get(CustomerRow, (partition_key, row_key))
            if row:
                s.delete(row)

    def ensure_ready(self) -> None:
        engine = self.sm.kw["bind"]
        CustomerRow.__table__.create(bind=engine, checkfirst=True)


def _customer_to_entity(c: Customer) -> dict[str, Any]:
    return {
        "PartitionKey": c.partition_key,
        "RowKey": c.row_key,
        "CustomerId": c.customer_id,
        "FirstName": c.first_name,
        "LastName": c.last_name,
        "Email": c.email,
        "PhoneNumber": c.phone_number,
        "PhotoUrl": c.photo_url or "",
    }


def _entity_to_customer(entity: Any) -> Customer:
    return Customer(
        partition_key=entity["PartitionKey"],
        row_key=entity["RowKey"],
        customer_id=entity.get("CustomerId") or "",
        first_name=entity.get("FirstName") or "",
        last_name=entity.get("LastName") or "",
        email=entity.get("Email") or "",
        phone_number=entity.get("PhoneNumber") or "",
        photo_url=entity.get("PhotoUrl") or None,
    )


class TableCustomerRepository(CustomerRepository):
    """Azure Table Storage. Entity property names follow the existing PascalCase table layout."""

    def __init__(self, table_name: str, *, connection_string: str = "", account: str = "") -> None:
        self.table_name = table_name
        self.connection_string = connection_string
        self.account = account

    def _service(self):
        from app.retail.storage import StorageError, azure_credential

        try:
            from azure.data.tables import TableServiceClient  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("azure-data-tables required for Azure storage.") from e
        if self.connection_string:
            return TableServiceClient.from_connection_string(self.connection_string)
        if not self.account:
            raise StorageError("AZURE_STORAGE_CONNECTION_STRING or AZURE_STORAGE_ACCOUNT must be set.")
        return TableServiceClient(
            endpoint=f"https://{self.account}.table.core.windows.net",
            credential=azure_credential(),
        )

    def _table(self):
        return self._service().get_table_client(self.table_name)

    def get(self, partition_key: str, row_key: str) -> Customer | None:
        from azure.core.exceptions import ResourceNotFoundError  # type: ignore

        try:
            entity = self._table().get_entity(partition_key=partition_key, row_key=row_key)
        except ResourceNotFoundError:
            logger.debug("Customer not found: %s/%s", partition_key, row_key)
            return None
        return _entity_to_customer(entity)

    def list(self) -> list[Customer]:
        return [_entity_to_customer(e) for e in self._table().list_entities()]

    def insert(self, customer: Customer) -> None:
        self._table().create_entity(entity=_customer_to_entity(customer))
        logger.info("Customer entity created: %s/%s", customer.partition_key, customer.row_key)

    def update(self, customer: Customer) -> None:
        from azure.data.tables import UpdateMode  # type: ignore

        self._table().update_entity(entity=_customer_to_entity(customer), mode=UpdateMode.REPLACE)
        logger.info("Customer entity updated: %s/%s", customer.partition_key, customer.row_key)

    def delete(self, partition_key: str, row_key: str) -> None:
        self._table().delete_entity(partition_key=partition_key, row_key=row_key)
        logger.info("Customer entity deleted: %s/%s", partition_key, row_key)

    def ensure_ready(self) -> None:
        self._service().create_table_if_not_exists(self.table_name)


def customer_repository_from_config(config: dict, sm: "sessionmaker | None" = None) -> CustomerRepository:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "memory":
        return MemoryCustomerRepository()
    if backend == "azure":
        return TableCustomerRepository(
            config.get("AZURE_CUSTOMER_TABLE") or "Customers",
            connection_string=(config.get("AZURE_STORAGE_CONNECTION_STRING") or "").strip(),
            account=(config.get("AZURE_STORAGE_ACCOUNT") or "").strip(),
        )
    if sm is None:
        raise ValueError("SQL customer repository needs a sessionmaker")
    return SqlCustomerRepository(sm)
