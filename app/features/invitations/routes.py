"""
Invitation routes.

Admins invite people into their organization; invitees verify the link and
either accept it with a password here or join through Google sign-in
(``/api/oauth/complete-registration``).
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.errors import AlreadyUsedError, AppError, ConflictError, ForbiddenError, NotFoundError
from app.core.rate_limit import CREDENTIAL_LIMIT, LOOKUP_LIMIT, limiter
from app.features.invitations.models import InvitationToken
from app.features.invitations.schemas import (
    InvitationAccept,
    InvitationAcceptResponse,
    InvitationCreate,
    InvitationCreateResponse,
    InvitationDetails,
    InvitationResponse,
    InvitationVerifyResponse,
)
from app.features.invitations.store import InvitationTokenStore, InvitationVerification, VerificationFailure, mask_token
from app.features.notifications.email import EmailDeliveryError, EmailSender, get_email_sender, invitation_email
from app.features.oauth.onboarding import verification_error
from app.features.organizations.models import Organization
from app.features.organizations.schemas import OrganizationSummary
from app.features.permissions.dependencies import assignable_roles, require_permission
from app.features.permissions.matrix import Role
from app.features.users.auth import create_session_token, hash_password, set_session_cookie
from app.features.users.dependencies import is_system_admin
from app.features.users.models import AuthProvider, User
from app.features.users.schemas import UserPublic
from app.features.users.usernames import allocate_username, base_username, username_taken
from app.utils import get_logger, utcnow


log = get_logger(__name__)

router = APIRouter(tags=["invitations"])

FAILURE_STATUS = {
    VerificationFailure.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    VerificationFailure.ORGANIZATION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    VerificationFailure.EXPIRED: status.HTTP_400_BAD_REQUEST,
    VerificationFailure.ALREADY_USED: status.HTTP_400_BAD_REQUEST,
}


def verification_failure_response(verification: InvitationVerification) -> JSONResponse:
    """``{success: false, message, reason}``; the reason tells the page what to offer."""
    return JSONResponse(
        status_code=FAILURE_STATUS[verification.reason],
        content={
            "success": False,
            "message": verification.message,
            "reason": verification.reason.value,
        },
    )


def invite_link(token: str) -> str:
    return f"{config.APP_URL}/invite?token={token}"


def to_response(invitation: InvitationToken) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        email=invitation.email,
        name=invitation.name,
        role=invitation.role,
        organization_id=invitation.organization_id,
        status=invitation.status,
        created_at=invitation.created_at,
        expires_at=invitation.expires_at,
        accepted_at=invitation.accepted_at,
        created_by=invitation.created_by,
        token_preview=mask_token(invitation.token),
    )


async def _get_invitation_in_scope(store: InvitationTokenStore, actor: User, invitation_id: str) -> InvitationToken:
    invitation = await store.get(invitation_id)
    if invitation is None or (not is_system_admin(actor) and invitation.organization_id != actor.organization_id):
        raise NotFoundError("Invitation not found")
    return invitation


@router.post("", response_model=InvitationCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    invitation_data: InvitationCreate,
    actor: Annotated[User, Depends(require_permission("users", "manage_users"))],
    email_sender: Annotated[EmailSender, Depends(get_email_sender)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Invite someone into an organization with a fixed role and e-mail them the link."""
    organization_id = invitation_data.organization_id or actor.organization_id
    if not organization_id:
        raise ForbiddenError("Your account is not associated with an organization")
    if not is_system_admin(actor) and organization_id != actor.organization_id:
        raise ForbiddenError("You can only invite users to your own organization")

    role = Role.parse(invitation_data.role)
    if role is None:
        raise AppError(f"Unknown role: {invitation_data.role}", code="invalid_role")
    if role not in assignable_roles(actor):
        raise ForbiddenError(f"You cannot invite users with the {role.value} role")

    organization = await db.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")

    email = invitation_data.email.lower()
    if await db.scalar(select(User.id).where(User.email == email)) is not None:
        raise ConflictError("A user with this email already exists")

    store = InvitationTokenStore(db)
    if await store.find_pending_for_email(email) is not None:
        raise ConflictError("A pending invitation already exists for this email")

    invitation = await store.create(
        email=email,
        name=invitation_data.name,
        role=role.value,
        organization_id=organization.id,
        created_by=actor.id,
    )
    # The row must be durable before the link leaves the building
    await db.commit()

    link = invite_link(invitation.token)
    subject, body = invitation_email(invitation.name, organization.name, link, invitation.role)
    email_sent, email_warning = True, None
    try:
        await email_sender.send(invitation.email, subject, body)
    except EmailDeliveryError:
        log.exception("Failed to send invitation %s to %s", invitation.id, invitation.email)
        email_sent = False
        email_warning = "Invitation created, but the email could not be sent. Share the invite link manually."

    return InvitationCreateResponse(
        message="Invitation sent successfully" if email_sent else "Invitation created",
        invitation=to_response(invitation),
        invite_link=link,
        email_sent=email_sent,
        email_warning=email_warning,
    )


@router.get("", response_model=list[InvitationResponse])
async def list_invitations(
    actor: Annotated[User, Depends(require_permission("users", "manage_users"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Invitations of the caller's organization, newest first."""
    if not actor.organization_id:
        return []
    invitations = await InvitationTokenStore(db).list_for_organization(actor.organization_id)
    return [to_response(invitation) for invitation in invitations]


@router.get("/verify")
@limiter.limit(LOOKUP_LIMIT)
async def verify_invitation(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    token: str = Query(..., min_length=1, max_length=128),
):
    """Check an invitation link before showing the accept page."""
    verification = await InvitationTokenStore(db).verify(token)
    if not verification.valid:
        return verification_failure_response(verification)

    return InvitationVerifyResponse(
        invitation=InvitationDetails(
            name=verification.name,
            email=verification.email,
            role=verification.role,
            organization=OrganizationSummary(
                id=verification.organization_id, name=verification.organization_name
            ),
            expires_at=verification.expires_at,
        )
    )


@router.post("/accept", response_model=InvitationAcceptResponse)
@limiter.limit(CREDENTIAL_LIMIT)
async def accept_invitation(
    request: Request,
    response: Response,
    accept: InvitationAccept,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a password account from an invitation and sign it in."""
    store = InvitationTokenStore(db)
    verification = await store.verify(accept.token)
    if not verification.valid:
        # Persist the lazy pending → expired transition before failing
        await db.commit()
        raise verification_error(verification)

    role = Role.parse(verification.role)
    if role is None:
        raise NotFoundError("Invitation not found", code=VerificationFailure.NOT_FOUND.value)

    if await db.scalar(select(User.id).where(User.email == verification.email)) is not None:
        raise ConflictError("An account with this email already exists. Please sign in instead.")
    username = base_username(accept.username) if accept.username else None
    if username and await username_taken(db, username):
        raise ConflictError("That username is already taken")

    user = User(
        username=username or await allocate_username(db, verification.email),
        email=verification.email,
        name=verification.name,
        role=role.value,
        organization_id=verification.organization_id,
        auth_provider=AuthProvider.LOCAL.value,
        password_hash=hash_password(accept.password),
        last_login_at=utcnow(),
    )
    db.add(user)
    await db.flush()

    if not await store.mark_accepted(verification.invitation_id):
        raise AlreadyUsedError("Invitation has already been used", code=VerificationFailure.ALREADY_USED.value)
    await db.commit()

    set_session_cookie(response, create_session_token(user))
    log.info("User %s joined organization %s as %s via invitation", user.id, user.organization_id, user.role)
    return InvitationAcceptResponse(
        message="Account created successfully",
        redirect_to="/dashboard",
        user=UserPublic.model_validate(user),
    )


@router.delete("/{invitation_id}", response_model=InvitationResponse)
async def cancel_invitation(
    invitation_id: str,
    actor: Annotated[User, Depends(require_permission("users", "manage_users"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Cancel a pending invitation; its link stops working immediately."""
    store = InvitationTokenStore(db)
    invitation = await _get_invitation_in_scope(store, actor, invitation_id)
    invitation = await store.cancel(invitation)
    return to_response(invitation)


@router.post("/{invitation_id}/resend", response_model=InvitationCreateResponse)
async def resend_invitation(
    invitation_id: str,
    actor: Annotated[User, Depends(require_permission("users", "manage_users"))],
    email_sender: Annotated[EmailSender, Depends(get_email_sender)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Issue a fresh link for a still-pending invitation and e-mail it again."""
    store = InvitationTokenStore(db)
    invitation = await _get_invitation_in_scope(store, actor, invitation_id)
    invitation = await store.resend(invitation)
    await db.commit()

    organization = await db.get(Organization, invitation.organization_id)
    link = invite_link(invitation.token)
    subject, body = invitation_email(invitation.name, organization.name, link, invitation.role)
    email_sent, email_warning = True, None
    try:
        await email_sender.send(invitation.email, subject, body)
    except EmailDeliveryError:
        log.exception("Failed to resend invitation %s to %s", invitation.id, invitation.email)
        email_sent = False
        email_warning = "Invitation renewed, but the email could not be sent. Share the invite link manually."

    return InvitationCreateResponse(
        message="Invitation resent" if email_sent else "Invitation renewed",
        invitation=to_response(invitation),
        invite_link=link,
        email_sent=email_sent,
        email_warning=email_warning,
    )
