"""
URL-safe organization handles.
"""
import re

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations.models import Organization
from app.utils import utcnow


_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """
    Lowercase, runs of non-alphanumerics become one ``-``, no leading or
    trailing ``-``. Names with nothing usable fall back to ``org-<timestamp>``.
    """
    slug = _NON_ALNUM.sub("-", (name or "").lower()).strip("-")
    if not slug:
        slug = f"org-{int(utcnow().timestamp() * 1000)}"
    return slug


async def unique_slug(db: AsyncSession, name: str) -> str:
    """``slugify(name)``, suffixed with ``-2``, ``-3``, ... until unused."""
    base = slugify(name)
    result = await db.execute(
        select(Organization.slug).where(
            (Organization.slug == base) | (Organization.slug.like(f"{base}-%"))
        )
    )
    taken = set(result.scalars().all())
    if base not in taken:
        return base

    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"
