"""
OAuth onboarding routes.

After Google sign-in, a person without an account lands on the onboarding page
with their ``googleId``. From there they either create an organization or
join one with an invitation code.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFoundError
from app.core.rate_limit import CREDENTIAL_LIMIT, LOOKUP_LIMIT, limiter
from app.features.invitations.routes import verification_failure_response
from app.features.invitations.store import InvitationTokenStore
from app.features.oauth.onboarding import CreateOrganization, JoinWithToken, OnboardingOrchestrator
from app.features.oauth.pending import PendingOAuthUserCache
from app.features.oauth.schemas import (
    CompleteRegistrationRequest,
    CompleteRegistrationResponse,
    InvitationCheckResponse,
    PendingUserPublic,
    PendingUserResponse,
)
from app.features.users.auth import set_session_cookie
from app.features.users.schemas import UserPublic


router = APIRouter(tags=["oauth"])


@router.post("/complete-registration", response_model=CompleteRegistrationResponse)
@limiter.limit(CREDENTIAL_LIMIT)
async def complete_registration(
    request: Request,
    response: Response,
    registration: CompleteRegistrationRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create or join an organization for a pending Google identity and sign it in."""
    if registration.action == "create":
        intent = CreateOrganization(
            name=registration.organization_name,
            type=registration.organization_type or "company",
            requested_role=registration.role,
        )
    else:
        intent = JoinWithToken(token=registration.invitation_code.strip(), requested_role=registration.role)

    result = await OnboardingOrchestrator(db).complete_registration(registration.google_id, intent)

    set_session_cookie(response, result.session_token)
    return CompleteRegistrationResponse(
        message=(
            "Organization created successfully"
            if registration.action == "create"
            else f"Welcome to {result.organization.name}"
        ),
        redirect_to=result.redirect_to,
        user=UserPublic.model_validate(result.user),
    )


@router.get("/pending/{google_id}", response_model=PendingUserResponse)
@limiter.limit(LOOKUP_LIMIT)
async def get_pending_user(
    request: Request,
    google_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Who is onboarding, for the onboarding page header."""
    pending = await PendingOAuthUserCache(db).get(google_id)
    if pending is None:
        raise NotFoundError("Pending user not found. Your session may have expired.", code="pending_user_not_found")
    return PendingUserResponse(
        user=PendingUserPublic(
            google_id=pending.id,
            email=pending.email,
            display_name=pending.display_name,
            photo_url=pending.photo_url,
        )
    )


@router.get("/verify-invitation/{token}", response_model=InvitationCheckResponse)
@limiter.limit(LOOKUP_LIMIT)
async def verify_invitation_code(
    request: Request,
    token: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Check an invitation code typed into the onboarding page."""
    verification = await InvitationTokenStore(db).verify(token)
    if not verification.valid:
        return verification_failure_response(verification)
    return InvitationCheckResponse(
        invitation_id=verification.invitation_id,
        organization_id=verification.organization_id,
        organization_name=verification.organization_name,
        role=verification.role,
        email=verification.email,
        name=verification.name,
    )
