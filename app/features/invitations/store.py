"""
Invitation token store.

Creates, verifies, accepts and cancels invitation tokens. Verification never
raises for expected conditions: it returns an InvitationVerification whose
``reason`` tells the caller which corrective action to offer (request a new
invite, log in instead, or "invalid link").
"""
import enum
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import ConflictError
from app.features.invitations.models import InvitationStatus, InvitationToken
from app.features.organizations.models import Organization
from app.utils import as_naive_utc, get_logger, utcnow


log = get_logger(__name__)

TOKEN_BYTES = 32


def generate_invitation_token() -> str:
    """256-bit random token, hex encoded."""
    return secrets.token_hex(TOKEN_BYTES)


def mask_token(token: str) -> str:
    return f"{token[:8]}..."


def _positive_ttl(ttl: timedelta) -> timedelta:
    if ttl <= timedelta(0):
        raise ValueError(f"Invitation TTL must be positive, got {ttl}")
    return ttl


class VerificationFailure(str, enum.Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    ORGANIZATION_NOT_FOUND = "organization_not_found"


FAILURE_MESSAGES = {
    VerificationFailure.NOT_FOUND: "Invitation not found",
    VerificationFailure.EXPIRED: "Invitation has expired",
    VerificationFailure.ALREADY_USED: "Invitation has already been used",
    VerificationFailure.ORGANIZATION_NOT_FOUND: "Organization not found",
}


@dataclass
class InvitationVerification:
    """Outcome of ``InvitationTokenStore.verify``."""
    valid: bool
    reason: Optional[VerificationFailure] = None
    invitation: Optional[InvitationToken] = None
    organization_name: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        return FAILURE_MESSAGES[self.reason] if self.reason else None

    @property
    def invitation_id(self) -> Optional[str]:
        return self.invitation.id if self.invitation else None

    @property
    def organization_id(self) -> Optional[str]:
        return self.invitation.organization_id if self.invitation else None

    @property
    def role(self) -> Optional[str]:
        return self.invitation.role if self.invitation else None

    @property
    def email(self) -> Optional[str]:
        return self.invitation.email if self.invitation else None

    @property
    def name(self) -> Optional[str]:
        return self.invitation.name if self.invitation else None

    @property
    def expires_at(self) -> Optional[datetime]:
        return self.invitation.expires_at if self.invitation else None

    @classmethod
    def failed(cls, reason: VerificationFailure, invitation: Optional[InvitationToken] = None):
        return cls(valid=False, reason=reason, invitation=invitation)


class InvitationTokenStore:
    """
    Invitation persistence over one AsyncSession.

    Methods flush but never commit; the request (or the onboarding transaction)
    owns the commit.
    """

    def __init__(
        self,
        db: AsyncSession,
        ttl: timedelta | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ttl = _positive_ttl(ttl if ttl is not None else timedelta(days=config.INVITATION_TTL_DAYS))
        self._now = now

    async def create(
        self,
        email: str,
        name: str,
        role: str,
        organization_id: str,
        created_by: Optional[str],
        ttl: timedelta | None = None,
    ) -> InvitationToken:
        ttl = _positive_ttl(ttl) if ttl is not None else self.ttl
        now = self._now()
        invitation = InvitationToken(
            token=generate_invitation_token(),
            email=email.strip().lower(),
            name=name,
            role=role,
            organization_id=organization_id,
            status=InvitationStatus.PENDING,
            created_at=now,
            expires_at=now + ttl,
            created_by=created_by,
        )
        self.db.add(invitation)
        await self.db.flush()

        log.info(
            "Created invitation %s for %s as %s in org %s (token %s)",
            invitation.id, invitation.email, role, organization_id, mask_token(invitation.token),
        )
        return invitation

    async def get(self, invitation_id: str) -> Optional[InvitationToken]:
        return await self.db.get(InvitationToken, invitation_id)

    async def get_by_token(self, token: str) -> Optional[InvitationToken]:
        return await self.db.scalar(select(InvitationToken).where(InvitationToken.token == token))

    def is_expired(self, invitation: InvitationToken) -> bool:
        return self._now() > as_naive_utc(invitation.expires_at)

    async def verify(self, token: str) -> InvitationVerification:
        invitation = await self.get_by_token(token) if token else None
        if invitation is None:
            log.info("Invitation token not found: %s", mask_token(token or ""))
            return InvitationVerification.failed(VerificationFailure.NOT_FOUND)

        if invitation.status == InvitationStatus.EXPIRED or self.is_expired(invitation):
            if invitation.status == InvitationStatus.PENDING:
                await self._transition(invitation.id, InvitationStatus.EXPIRED)
            log.info("Invitation %s has expired", invitation.id)
            return InvitationVerification.failed(VerificationFailure.EXPIRED, invitation)

        if invitation.status != InvitationStatus.PENDING:
            log.info("Invitation %s already used", invitation.id)
            return InvitationVerification.failed(VerificationFailure.ALREADY_USED, invitation)

        organization = await self.db.get(Organization, invitation.organization_id)
        if organization is None:
            log.warning("Organization %s not found for invitation %s", invitation.organization_id, invitation.id)
            return InvitationVerification.failed(VerificationFailure.ORGANIZATION_NOT_FOUND, invitation)

        return InvitationVerification(valid=True, invitation=invitation, organization_name=organization.name)

    async def mark_accepted(self, invitation_id: str) -> bool:
        """
        Move a pending invitation to accepted.

        Returns False without side effects when the invitation is no longer
        pending; of two concurrent acceptances exactly one gets True.
        """
        accepted = await self._transition(invitation_id, InvitationStatus.ACCEPTED, accepted_at=self._now())
        if accepted:
            log.info("Invitation %s accepted", invitation_id)
        else:
            log.info("Invitation %s was not pending; acceptance ignored", invitation_id)
        return accepted

    async def cancel(self, invitation: InvitationToken) -> InvitationToken:
        """
        Cancel a pending invitation by expiring it.

        Ownership (``invitation.organization_id``) is checked by the caller.
        """
        if invitation.status == InvitationStatus.ACCEPTED:
            raise ConflictError("Cannot cancel an invitation that has already been accepted")
        if invitation.status == InvitationStatus.PENDING:
            await self._transition(invitation.id, InvitationStatus.EXPIRED)
            await self.db.refresh(invitation)
            log.info("Invitation %s cancelled", invitation.id)
        return invitation

    async def resend(self, invitation: InvitationToken) -> InvitationToken:
        """Rotate the token of a still-pending invitation and restart its window."""
        if invitation.status != InvitationStatus.PENDING or self.is_expired(invitation):
            raise ConflictError("Only pending invitations can be resent; create a new invitation instead")

        now = self._now()
        invitation.token = generate_invitation_token()
        invitation.created_at = now
        invitation.expires_at = now + self.ttl
        await self.db.flush()
        log.info("Invitation %s re-issued (token %s)", invitation.id, mask_token(invitation.token))
        return invitation

    async def list_for_organization(self, organization_id: str) -> list[InvitationToken]:
        result = await self.db.execute(
            select(InvitationToken)
            .where(InvitationToken.organization_id == organization_id)
            .order_by(InvitationToken.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_pending_for_email(self, email: str) -> Optional[InvitationToken]:
        """The live pending invitation for this address, expiring stale ones on the way."""
        result = await self.db.execute(
            select(InvitationToken).where(
                InvitationToken.email == email.strip().lower(),
                InvitationToken.status == InvitationStatus.PENDING,
            )
        )
        for invitation in result.scalars().all():
            if self.is_expired(invitation):
                await self._transition(invitation.id, InvitationStatus.EXPIRED)
                continue
            return invitation
        return None

    async def expire_stale(self) -> int:
        """Bulk pending → expired for every invitation past its expiry."""
        result = await self.db.execute(
            update(InvitationToken)
            .where(
                InvitationToken.status == InvitationStatus.PENDING,
                InvitationToken.expires_at < self._now(),
            )
            .values(status=InvitationStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            log.info("Marked %d invitations as expired", result.rowcount)
        return result.rowcount

    async def _transition(self, invitation_id: str, target: InvitationStatus, **values) -> bool:
        """Conditional status update guarded by ``status = pending``."""
        result = await self.db.execute(
            update(InvitationToken)
            .where(
                InvitationToken.id == invitation_id,
                InvitationToken.status == InvitationStatus.PENDING,
            )
            .values(status=target, **values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
