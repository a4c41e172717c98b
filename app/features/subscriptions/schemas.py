"""
Pydantic schemas for subscription status.
"""
from datetime import datetime

from app.core.schemas import CamelModel


class SubscriptionStatusResponse(CamelModel):
    entitled: bool
    reason: str | None = None
    organization_id: str | None = None
    subscription_id: str | None = None
    status: str | None = None
    trial_ends_at: datetime | None = None
    current_period_end: datetime | None = None
