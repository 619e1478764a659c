"""SQLAlchemy ORM models for the persistence store."""

from datetime import datetime

from sqlalchemy import DateTime, Index, LargeBinary, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ------------------------------------------------------------------------------
# Key-value entry
# ------------------------------------------------------------------------------
class KVEntry(Base):
    """One key-value record with an optional expiry.

    Job records live under ``job:{id}`` and rate windows under
    ``ratelimit:{action}:{subject}``. Timestamps are stored as naive UTC.
    """

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    # None = never expires
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("ix_kv_entries_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        return f"<KVEntry(key={self.key!r}, expires_at={self.expires_at})>"
