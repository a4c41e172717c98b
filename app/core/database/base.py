"""
SQLAlchemy declarative base and common model utilities.

All SQLAlchemy models should inherit from Base and use ULID string keys:

    class Widget(Base, TimestampMixin):
        __tablename__ = "widgets"

        id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID string (26 chars, lexicographically sortable)."""
    return str(ULID())


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class TimestampMixin:
    """
    Mixin adding server-managed created_at and updated_at columns.

    These are bookkeeping columns; business expiry rules use their own
    explicitly-set naive UTC columns instead.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
