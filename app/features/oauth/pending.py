"""
Pending OAuth user cache.

Holds externally-authenticated identities that are not yet bound to an
organization. Entries expire ``PENDING_OAUTH_TTL_MINUTES`` after they were
stored. ``get`` enforces expiry itself, so correctness never depends on when
the periodic sweep last ran; both paths use the same rule
(``now > created_at + ttl``).
"""
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.oauth.models import PendingOAuthUser
from app.utils import as_naive_utc, get_logger, utcnow


log = get_logger(__name__)


@dataclass
class OAuthIdentity:
    """What an OAuth provider tells us about a freshly authenticated person."""
    id: str
    email: str
    display_name: str
    photo_url: Optional[str] = None
    profile: dict[str, Any] = field(default_factory=dict)


class PendingOAuthUserCache:
    """
    Database-backed pending-identity store.

    Each instance wraps one AsyncSession; writes are flushed but not committed,
    so callers decide the transaction boundary.
    """

    def __init__(
        self,
        db: AsyncSession,
        ttl: timedelta | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ttl = ttl if ttl is not None else timedelta(minutes=config.PENDING_OAUTH_TTL_MINUTES)
        self._now = now

    def is_expired(self, entry: PendingOAuthUser) -> bool:
        return self._now() > as_naive_utc(entry.created_at) + self.ttl

    async def store(self, identity: OAuthIdentity) -> PendingOAuthUser:
        """Insert or replace the entry for ``identity.id``, restarting its TTL window."""
        entry = await self.db.get(PendingOAuthUser, identity.id)
        if entry is None:
            entry = PendingOAuthUser(id=identity.id)
            self.db.add(entry)

        entry.email = identity.email
        entry.display_name = identity.display_name
        entry.photo_url = identity.photo_url
        entry.profile = identity.profile
        entry.created_at = self._now()
        await self.db.flush()

        log.info("Stored pending OAuth user %s (%s)", identity.email, identity.id)
        return entry

    async def get(self, external_id: str) -> Optional[PendingOAuthUser]:
        entry = await self.db.get(PendingOAuthUser, external_id)
        if entry is None:
            log.info("Pending OAuth user not found: %s", external_id)
            return None

        if self.is_expired(entry):
            log.info("Pending OAuth user has expired: %s (%s)", entry.email, external_id)
            await self.db.delete(entry)
            await self.db.flush()
            return None

        return entry

    async def remove(self, external_id: str) -> bool:
        """
        Delete the entry. Returns False when nothing was there, which is how a
        second, concurrent completion for the same identity finds out it lost.
        """
        result = await self.db.execute(
            delete(PendingOAuthUser).where(PendingOAuthUser.id == external_id)
        )
        removed = result.rowcount > 0
        if removed:
            log.info("Removed pending OAuth user %s", external_id)
        return removed

    async def sweep_expired(self) -> int:
        cutoff = self._now() - self.ttl
        result = await self.db.execute(
            delete(PendingOAuthUser).where(PendingOAuthUser.created_at < cutoff)
        )
        if result.rowcount:
            log.info("Cleaned up %d expired pending OAuth users", result.rowcount)
        return result.rowcount

