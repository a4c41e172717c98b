"""
Username allocation.

Usernames are derived from the e-mail local part: lowercased, anything other
than ``[a-z0-9._-]`` dropped. When that is taken a random 4-hex suffix is
appended until a free one is found.
"""
import re
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.users.models import User


_DISALLOWED = re.compile(r"[^a-z0-9._-]+")
MAX_ATTEMPTS = 20


def base_username(email: str) -> str:
    local_part = (email or "").split("@", 1)[0].lower()
    return _DISALLOWED.sub("", local_part) or "user"


async def username_taken(db: AsyncSession, username: str) -> bool:
    return await db.scalar(select(User.id).where(User.username == username)) is not None


async def allocate_username(db: AsyncSession, email: str, preferred: str | None = None) -> str:
    """A username no other user holds, starting from ``preferred`` or the e-mail."""
    base = base_username(preferred) if preferred else base_username(email)
    if not await username_taken(db, base):
        return base
    for _ in range(MAX_ATTEMPTS):
        candidate = f"{base}{secrets.token_hex(2)}"
        if not await username_taken(db, candidate):
            return candidate
    # 65536 suffixes exhausted for one base is not a realistic state
    return f"{base}{secrets.token_hex(4)}"
