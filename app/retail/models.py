from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class AuditMessageRow(Base):
    """
    Append-only audit queue entry for the SQL backend.
    Mirrors what a storage queue keeps per message: id, insertion time and an opaque text body.
    """

    __tablename__ = "audit_messages"
    __table_args__ = (
        Index("idx_audit_messages_inserted_at", "inserted_at"),
    )

    # Surrogate ordering key; message_id is what callers see.
    seq: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    message_text: Mapped[str] = mapped_column(Text, nullable=False)

