"""
Onboarding orchestrator.

Turns a pending OAuth identity into a provisioned user, either by creating a
new organization (the creator becomes its ``org_admin``) or by redeeming an
invitation (the invitation dictates organization and role).

Everything happens in one transaction, strictly ordered: validate, create the
durable records, consume the invitation, consume the pending entry, commit,
and only then issue a session. A failure at any step rolls back all of it, so
the pending entry and the invitation stay usable for a retry.
"""
import enum
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import (
    AlreadyUsedError,
    AppError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    UnauthorizedIntentError,
    UpstreamError,
)
from app.features.invitations.store import (
    InvitationTokenStore,
    InvitationVerification,
    VerificationFailure,
)
from app.features.oauth.models import PendingOAuthUser
from app.features.oauth.pending import PendingOAuthUserCache
from app.features.organizations.models import Organization
from app.features.organizations.slugs import unique_slug
from app.features.permissions.matrix import Role
from app.features.users.auth import create_session_token
from app.features.users.models import AuthProvider, User
from app.features.users.usernames import allocate_username
from app.utils import get_logger, utcnow


log = get_logger(__name__)


class OnboardingState(str, enum.Enum):
    AWAITING_INTENT = "awaiting_intent"
    CREATING = "creating"
    JOINING = "joining"
    PROVISIONED = "provisioned"
    FAILED = "failed"


class PendingUserNotFoundError(NotFoundError):
    code = "pending_user_not_found"

    def __init__(self, message: str = "Pending user not found. Your session may have expired."):
        super().__init__(message)


class OnboardingPersistenceError(UpstreamError):
    code = "onboarding_failed"

    def __init__(self, message: str = "Could not complete registration. Please try again."):
        super().__init__(message)


@dataclass
class CreateOrganization:
    name: str
    type: str = "company"
    requested_role: Optional[str] = None


@dataclass
class JoinWithToken:
    token: str
    requested_role: Optional[str] = None


Intent = Union[CreateOrganization, JoinWithToken]


@dataclass
class OnboardingResult:
    user: User
    organization: Organization
    redirect_to: str
    session_token: str
    state: OnboardingState = OnboardingState.PROVISIONED


_VERIFICATION_ERRORS: dict[VerificationFailure, type[AppError]] = {
    VerificationFailure.NOT_FOUND: NotFoundError,
    VerificationFailure.EXPIRED: ExpiredError,
    VerificationFailure.ALREADY_USED: AlreadyUsedError,
    VerificationFailure.ORGANIZATION_NOT_FOUND: NotFoundError,
}


def verification_error(verification: InvitationVerification) -> AppError:
    """The typed error for a failed verification; keeps the reasons distinguishable."""
    error_cls = _VERIFICATION_ERRORS[verification.reason]
    return error_cls(verification.message, code=verification.reason.value)


def check_requested_role(requested: Optional[str], granted: Role) -> None:
    """A client may echo the role it is getting, never ask for another one."""
    if requested is None or requested == "":
        return
    if Role.parse(requested) != granted:
        log.warning("Rejected onboarding intent asking for role %r (granted %s)", requested, granted.value)
        raise UnauthorizedIntentError(
            f"You cannot choose the {requested} role; it is assigned by your organization"
        )


class OnboardingOrchestrator:
    CREATE_REDIRECT = "/pricing"
    JOIN_REDIRECT = "/dashboard"

    def __init__(
        self,
        db: AsyncSession,
        pending: PendingOAuthUserCache | None = None,
        invitations: InvitationTokenStore | None = None,
        now: Callable[[], datetime] = utcnow,
        trial_period: timedelta | None = None,
    ):
        self.db = db
        self._now = now
        self.pending = pending or PendingOAuthUserCache(db, now=now)
        self.invitations = invitations or InvitationTokenStore(db, now=now)
        self.trial_period = trial_period if trial_period is not None else timedelta(days=config.TRIAL_PERIOD_DAYS)
        self.state = OnboardingState.AWAITING_INTENT

    async def complete_registration(self, external_id: str, intent: Intent) -> OnboardingResult:
        """
        Provision the pending identity ``external_id`` according to ``intent``.

        Raises PendingUserNotFoundError, NotFoundError, ExpiredError,
        AlreadyUsedError, ConflictError, UnauthorizedIntentError or
        OnboardingPersistenceError. On any of them nothing has been written.
        """
        try:
            result = await self._provision(external_id, intent)
            await self.db.commit()
        except AppError:
            self.state = OnboardingState.FAILED
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.state = OnboardingState.FAILED
            await self.db.rollback()
            log.exception("Onboarding of %s failed while writing: %s", external_id, e)
            raise OnboardingPersistenceError() from e

        result.session_token = create_session_token(result.user)
        self.state = OnboardingState.PROVISIONED
        log.info(
            "Provisioned user %s (%s) in organization %s as %s",
            result.user.id, result.user.email, result.organization.id, result.user.role,
        )
        return result

    async def _provision(self, external_id: str, intent: Intent) -> OnboardingResult:
        pending = await self.pending.get(external_id)
        if pending is None:
            raise PendingUserNotFoundError()
        await self._ensure_no_existing_account(pending)

        if isinstance(intent, CreateOrganization):
            self.state = OnboardingState.CREATING
            organization, user = await self._create_organization(pending, intent)
            redirect_to = self.CREATE_REDIRECT
        elif isinstance(intent, JoinWithToken):
            self.state = OnboardingState.JOINING
            organization, user = await self._join_organization(pending, intent)
            redirect_to = self.JOIN_REDIRECT
        else:
            raise TypeError(f"Unsupported onboarding intent: {intent!r}")

        # Conditional delete: a concurrent completion for the same identity
        # already consumed the entry.
        if not await self.pending.remove(external_id):
            raise PendingUserNotFoundError()

        return OnboardingResult(user=user, organization=organization, redirect_to=redirect_to, session_token="")

    async def _ensure_no_existing_account(self, pending: PendingOAuthUser) -> None:
        existing = await self.db.scalar(
            select(User.id).where(or_(User.email == pending.email.lower(), User.external_id == pending.id))
        )
        if existing is not None:
            raise ConflictError("An account with this email already exists. Please sign in instead.")

    async def _create_organization(
        self, pending: PendingOAuthUser, intent: CreateOrganization
    ) -> tuple[Organization, User]:
        check_requested_role(intent.requested_role, Role.ORG_ADMIN)
        name = (intent.name or "").strip()
        if not name:
            raise AppError("Organization name is required", code="invalid_intent")

        organization = Organization(
            name=name,
            slug=await unique_slug(self.db, name),
            type=intent.type or "company",
            email=pending.email.lower(),
            trial_ends_at=self._now() + self.trial_period,
        )
        self.db.add(organization)
        await self.db.flush()

        user = await self._create_user(pending, organization, Role.ORG_ADMIN)
        log.info("Created organization %s (%s) for %s", organization.id, organization.slug, pending.email)
        return organization, user

    async def _join_organization(
        self, pending: PendingOAuthUser, intent: JoinWithToken
    ) -> tuple[Organization, User]:
        verification = await self.invitations.verify(intent.token)
        if not verification.valid:
            raise verification_error(verification)

        granted = Role.parse(verification.role)
        if granted is None:
            log.error("Invitation %s carries unknown role %r", verification.invitation_id, verification.role)
            raise NotFoundError("Invitation not found", code=VerificationFailure.NOT_FOUND.value)
        check_requested_role(intent.requested_role, granted)

        organization = await self.db.get(Organization, verification.organization_id)
        user = await self._create_user(pending, organization, granted)

        if not await self.invitations.mark_accepted(verification.invitation_id):
            raise AlreadyUsedError(
                "Invitation has already been used", code=VerificationFailure.ALREADY_USED.value
            )
        return organization, user

    async def _create_user(self, pending: PendingOAuthUser, organization: Organization, role: Role) -> User:
        email = pending.email.lower()
        user = User(
            username=await allocate_username(self.db, email),
            email=email,
            name=pending.display_name or email,
            role=role.value,
            organization_id=organization.id,
            auth_provider=AuthProvider.GOOGLE.value,
            external_id=pending.id,
            photo_url=pending.photo_url,
            last_login_at=self._now(),
        )
        self.db.add(user)
        await self.db.flush()
        return user
