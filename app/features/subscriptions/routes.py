"""
Subscription status routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.models import Organization
from app.features.subscriptions.gate import SubscriptionGate
from app.features.subscriptions.models import Subscription
from app.features.subscriptions.schemas import SubscriptionStatusResponse
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter(tags=["subscription"])


def get_subscription_gate() -> SubscriptionGate:
    return SubscriptionGate.from_config()


@router.get("/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    user: Annotated[User, Depends(get_current_user)],
    gate: Annotated[SubscriptionGate, Depends(get_subscription_gate)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Whether the caller's organization may use the application, and why not."""
    decision = await gate.entitlement(db, user)
    response = SubscriptionStatusResponse(
        entitled=decision.allowed,
        reason=decision.reason.value if decision.reason else None,
        organization_id=user.organization_id,
    )

    organization = await db.get(Organization, user.organization_id) if user.organization_id else None
    if organization is not None and organization.subscription_id:
        response.subscription_id = organization.subscription_id
        subscription = await db.get(Subscription, organization.subscription_id)
        if subscription is not None:
            response.status = subscription.status
            response.trial_ends_at = subscription.trial_ends_at
            response.current_period_end = subscription.current_period_end
    if organization is not None and response.trial_ends_at is None:
        response.trial_ends_at = organization.trial_ends_at
    return response
