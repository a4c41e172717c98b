"""
Subscription model.

Only the fields the entitlement gate reads are modelled here; plan catalog and
payment records belong to the billing integration.
"""
import enum
from datetime import datetime
from sqlalchemy import String, ForeignKey, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class SubscriptionStatus(str, enum.Enum):
    """Mirrors the billing provider's subscription statuses."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    UNPAID = "unpaid"


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Kept as a plain string: the billing provider may introduce statuses we don't know yet
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, org_id={self.organization_id}, status={self.status})>"
