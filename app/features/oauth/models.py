"""
Pending OAuth identity table.

Rows live here between a successful Google sign-in and the moment the person
creates or joins an organization. Keeping them in the database (rather than
process memory) lets any app instance finish an onboarding another one started.
"""
from datetime import datetime
from typing import Any
from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base


class PendingOAuthUser(Base):
    __tablename__ = "pending_oauth_users"

    # Provider subject, e.g. the Google account id
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    photo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    profile: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Naive UTC; the TTL window starts here
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<PendingOAuthUser(id={self.id}, email={self.email!r})>"
