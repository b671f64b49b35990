"""
SQLAlchemy ORM models for database tables.

The sighting history is a single JSON snapshot, so one generic key/value
table is all the schema there is.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class KeyValueEntryDB(Base):
    """
    Database model for one persisted key.

    Values are opaque text (JSON for the sighting snapshot).
    """

    __tablename__ = "key_value_entries"

    key: Mapped[str] = mapped_column(String(191), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<KeyValueEntry(key={self.key}, size={len(self.value)})>"
