"""Pytest configuration and fixtures"""
from datetime import datetime, timedelta
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.base import generate_ulid
from app.core.database.engine import get_db, init_db
from app.core.rate_limit import limiter
from app.features.notifications.email import EmailDeliveryError, EmailSender, get_email_sender
from app.features.organizations.models import Organization
from app.features.subscriptions.models import Subscription
from app.features.users.auth import create_session_token, hash_password
from app.features.users.models import AuthProvider, User
from app.main import app
from app.utils import utcnow


class FrozenClock:
    """Injectable ``now`` that only moves when told to."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingEmailSender(EmailSender):
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send(self, to: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise EmailDeliveryError("SMTP relay unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html_body})


@pytest.fixture
async def engine(tmp_path):
    """A fresh SQLite database file per test."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_db(bind=test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
async def client(session_factory, email_sender):
    """HTTP client against the app, wired to the per-test database."""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    previous_factory = app.state.session_factory
    app.state.session_factory = session_factory
    limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
    app.state.session_factory = previous_factory


@pytest.fixture
def make_organization(db):
    """Create an organization, optionally with a subscription in ``status``."""
    async def _make(
        name: str = "Blue Wave Pools",
        subscription_status: Optional[str] = "active",
        trial_ends_at: Optional[datetime] = None,
    ) -> Organization:
        organization = Organization(name=name, slug=f"{name.lower().replace(' ', '-')}-{generate_ulid().lower()}")
        db.add(organization)
        await db.flush()
        if subscription_status is not None:
            subscription = Subscription(
                organization_id=organization.id,
                status=subscription_status,
                trial_ends_at=trial_ends_at,
            )
            db.add(subscription)
            await db.flush()
            organization.subscription_id = subscription.id
        await db.commit()
        return organization

    return _make


@pytest.fixture
def make_user(db):
    async def _make(
        organization: Optional[Organization],
        role: str = "manager",
        email: Optional[str] = None,
        password: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> User:
        email = email or f"{role}-{generate_ulid().lower()}@example.com"
        user = User(
            username=email.split("@")[0],
            email=email,
            name=role.replace("_", " ").title(),
            role=role,
            organization_id=organization.id if organization else None,
            auth_provider=AuthProvider.GOOGLE.value if external_id else AuthProvider.LOCAL.value,
            external_id=external_id,
            password_hash=hash_password(password) if password else None,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(user)}"}
