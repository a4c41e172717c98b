"""
Database engine configuration and session management.

Current: SQLite (async with aiosqlite)
Production: PostgreSQL via asyncpg, selected purely through DATABASE_URL.

The pending OAuth cache lives in this database too, so every app instance
behind a load balancer shares one view of in-flight onboarding.
"""
from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core import config

engine = create_async_engine(
    config.SQLALCHEMY_DATABASE_URL,
    # NullPool for SQLite to avoid connection pool issues
    poolclass=NullPool if config.SQLALCHEMY_DATABASE_URL.startswith("sqlite") else None,
    echo=False,
    future=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    The session is committed when the request handler returns normally and
    rolled back if it raises.

    Usage in FastAPI routes:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(bind: AsyncEngine | None = None):
    """
    Create all tables that do not exist yet.

    Called on application startup; tests call it against their own engine.
    """
    from app.core.database.base import Base

    # Import all models to ensure they're registered with SQLAlchemy
    from app.features.organizations.models import Organization  # noqa: F401
    from app.features.subscriptions.models import Subscription  # noqa: F401
    from app.features.users.models import User  # noqa: F401
    from app.features.invitations.models import InvitationToken  # noqa: F401
    from app.features.oauth.models import PendingOAuthUser  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
