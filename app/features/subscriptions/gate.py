"""
Subscription gate.

Decides, per request, whether an authenticated user's organization is entitled
to use the application. Denials carry a machine-readable reason which the
middleware turns into a redirect to the pricing page.

Rules, first match wins:

1. public paths (exact, prefix, or anything that looks like a static asset)
2. unauthenticated requests (authentication is enforced elsewhere)
3. exempt roles and exempt e-mail addresses
4. organization and subscription checks

An unexpected failure while evaluating rule 4 lets the request through and is
logged; an outage of the billing data must not lock every tenant out.
"""
import enum
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.organizations.models import Organization
from app.features.subscriptions.models import Subscription, SubscriptionStatus
from app.features.users.models import User
from app.utils import as_naive_utc, get_logger, utcnow


log = get_logger(__name__)

ENTITLED_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})


class DenialReason(str, enum.Enum):
    NO_ORGANIZATION = "no-organization"
    NO_SUBSCRIPTION = "no-subscription"
    INVALID_SUBSCRIPTION = "invalid-subscription"
    INACTIVE_SUBSCRIPTION = "inactive-subscription"
    TRIAL_ENDED = "trial-ended"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: Optional[DenialReason] = None

    @classmethod
    def allow(cls) -> "GateDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenialReason) -> "GateDecision":
        return cls(allowed=False, reason=reason)


def is_entitled(subscription: Subscription, now: datetime) -> Optional[DenialReason]:
    """None when ``subscription`` grants access at ``now``, else why not."""
    if subscription.status not in ENTITLED_STATUSES:
        return DenialReason.INACTIVE_SUBSCRIPTION
    if subscription.status == SubscriptionStatus.TRIALING.value:
        if subscription.trial_ends_at is None or as_naive_utc(subscription.trial_ends_at) <= now:
            return DenialReason.TRIAL_ENDED
    return None


class SubscriptionGate:
    def __init__(
        self,
        public_paths: Iterable[str],
        public_prefixes: Iterable[str],
        exempt_roles: Iterable[str] = (),
        exempt_emails: Iterable[str] = (),
        now: Callable[[], datetime] = utcnow,
    ):
        self.public_paths = frozenset(public_paths)
        self.public_prefixes = tuple(public_prefixes)
        self.exempt_roles = frozenset(exempt_roles)
        self.exempt_emails = frozenset(email.lower() for email in exempt_emails)
        self._now = now

    @classmethod
    def from_config(cls) -> "SubscriptionGate":
        return cls(
            public_paths=config.SUBSCRIPTION_PUBLIC_PATHS,
            public_prefixes=config.SUBSCRIPTION_PUBLIC_PREFIXES,
            exempt_roles=config.SUBSCRIPTION_EXEMPT_ROLES,
            exempt_emails=config.SUBSCRIPTION_EXEMPT_EMAILS,
        )

    def is_public_path(self, path: str) -> bool:
        if path in self.public_paths:
            return True
        if any(path.startswith(prefix) for prefix in self.public_prefixes):
            return True
        # Static assets (/assets/app.js, /favicon.ico, ...)
        return "." in path

    def is_exempt(self, user: User) -> bool:
        return user.role in self.exempt_roles or (user.email or "").lower() in self.exempt_emails

    async def check(self, db: AsyncSession, path: str, user: Optional[User]) -> GateDecision:
        if self.is_public_path(path):
            return GateDecision.allow()
        if user is None:
            return GateDecision.allow()
        if self.is_exempt(user):
            log.info("Subscription check bypassed for exempt user %s (%s)", user.email, user.role)
            return GateDecision.allow()

        try:
            decision = await self._check_organization(db, user)
        except Exception:
            log.exception("Subscription check failed for user %s; allowing request", user.id)
            return GateDecision.allow()

        if not decision.allowed:
            log.info("Subscription gate denied %s for user %s: %s", path, user.id, decision.reason.value)
        return decision

    async def entitlement(self, db: AsyncSession, user: User) -> GateDecision:
        """Rule 4 only; used by the status endpoint."""
        if self.is_exempt(user):
            return GateDecision.allow()
        return await self._check_organization(db, user)

    async def _check_organization(self, db: AsyncSession, user: User) -> GateDecision:
        if not user.organization_id:
            return GateDecision.deny(DenialReason.NO_ORGANIZATION)

        organization = await db.get(Organization, user.organization_id)
        if organization is None:
            return GateDecision.deny(DenialReason.NO_ORGANIZATION)

        if not organization.subscription_id:
            return GateDecision.deny(DenialReason.NO_SUBSCRIPTION)

        subscription = await db.get(Subscription, organization.subscription_id)
        if subscription is None:
            return GateDecision.deny(DenialReason.INVALID_SUBSCRIPTION)

        reason = is_entitled(subscription, self._now())
        if reason is not None:
            return GateDecision.deny(reason)
        return GateDecision.allow()
