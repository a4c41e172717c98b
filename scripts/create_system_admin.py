"""
Create (or promote) a system administrator.

The account is bound to a home organization, created on first run, so it can
use tenant-scoped screens as well.

Usage:
    python -m scripts.create_system_admin admin@example.com "Admin Name"

The password is read from ADMIN_PASSWORD, or prompted for when unset.
"""
import argparse
import asyncio
import getpass
import os

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.organizations.models import Organization
from app.features.organizations.slugs import unique_slug
from app.features.permissions.matrix import Role
from app.features.users.auth import hash_password
from app.features.users.models import AuthProvider, User
from app.features.users.usernames import allocate_username
from app.utils import configure_logging, get_logger


log = get_logger(__name__)

HOME_ORGANIZATION_NAME = "System Administration"


async def ensure_home_organization(db: AsyncSession) -> Organization:
    organization = await db.scalar(select(Organization).where(Organization.name == HOME_ORGANIZATION_NAME))
    if organization is not None:
        return organization

    organization = Organization(
        name=HOME_ORGANIZATION_NAME,
        slug=await unique_slug(db, HOME_ORGANIZATION_NAME),
        type="internal",
    )
    db.add(organization)
    await db.flush()
    log.info("Created organization %s (%s)", organization.name, organization.id)
    return organization


async def create_system_admin(db: AsyncSession, email: str, name: str, password: str) -> User:
    """Insert the admin, or promote and reset the password of an existing account."""
    email = email.strip().lower()
    user = await db.scalar(select(User).where(User.email == email))

    if user is not None:
        log.info("User %s already exists, updating password and role", user.id)
        user.role = Role.SYSTEM_ADMIN.value
        user.password_hash = hash_password(password)
        user.is_active = True
    else:
        organization = await ensure_home_organization(db)
        user = User(
            username=await allocate_username(db, email),
            email=email,
            name=name,
            role=Role.SYSTEM_ADMIN.value,
            organization_id=organization.id,
            auth_provider=AuthProvider.LOCAL.value,
            password_hash=hash_password(password),
        )
        db.add(user)
        log.info("Created system admin %s", email)

    await db.commit()
    return user


async def main(email: str, name: str, password: str):
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            user = await create_system_admin(db, email, name, password)
            log.info("System admin ready: %s (username %s)", user.email, user.username)
        except Exception as e:
            log.error("Error creating system admin: %s", e, exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("email")
    parser.add_argument("name", nargs="?", default="System Admin")
    args = parser.parse_args()

    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    password = os.environ.get("ADMIN_PASSWORD") or getpass.getpass("Password: ")
    asyncio.run(main(args.email, args.name, password))
