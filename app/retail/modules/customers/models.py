"""
Customer records.

`Customer` is the plain record every store speaks; `CustomerRow` is its SQL table
for the local/s3 backends. (partition_key, row_key) is the identity in every backend
and is never rewritten after insert.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.retail.models import Base

CUSTOMER_PARTITION_KEY = "customer"


@dataclass
class Customer:
    partition_key: str
    row_key: str
    customer_id: str
    first_name: str
    last_name: str
    email: str
    phone_number: str
    photo_url: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)


class CustomerRow(Base):
    __tablename__ = "customers"
    __table_args__ = (
        Index("idx_customers_customer_id", "customer_id"),
    )

    partition_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    row_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)

    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    phone_number: Mapped[str] = mapped_column(Text, nullable=False)
    photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_customer(self) -> Customer:
        return Customer(
            partition_key=self.partition_key,
            row_key=self.row_key,
            customer_id=self.customer_id,
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            phone_number=self.phone_number,
            photo_url=self.photo_url,
        )
