from datetime import timedelta

import httpx
import pytest

from app.features.invitations.models import InvitationStatus
from app.features.invitations.store import InvitationTokenStore
from app.features.notifications.email import EmailDeliveryError, HttpEmailSender, invitation_email
from app.features.oauth.models import PendingOAuthUser
from app.main import sweep_once
from app.utils import utcnow


async def test_sweep_once(session_factory, make_organization, db):
    organization = await make_organization()
    invitation = await InvitationTokenStore(db).create("old@example.com", "Old", "client", organization.id, None)
    invitation.expires_at = utcnow() - timedelta(seconds=1)
    db.add(PendingOAuthUser(
        id="stale", email="stale@example.com", display_name="Stale", created_at=utcnow() - timedelta(hours=2),
    ))
    db.add(PendingOAuthUser(id="fresh", email="fresh@example.com", display_name="Fresh", created_at=utcnow()))
    await db.commit()

    assert await sweep_once(session_factory) == (1, 1)

    async with session_factory() as check:
        assert await check.get(PendingOAuthUser, "stale") is None
        assert await check.get(PendingOAuthUser, "fresh") is not None
        assert (await InvitationTokenStore(check).get(invitation.id)).status == InvitationStatus.EXPIRED


def test_invitation_email_escapes_names():
    subject, body = invitation_email("<b>Eve</b>", "Pools & Spas", "http://app/invite?token=abc", "office_staff")

    assert subject == "You're invited to join Pools & Spas"
    assert "&lt;b&gt;Eve&lt;/b&gt;" in body
    assert "office staff" in body
    assert 'href="http://app/invite?token=abc"' in body


async def test_http_email_sender(monkeypatch):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202 if len(requests) == 1 else 503)

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        httpx, "AsyncClient", lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs)
    )
    sender = HttpEmailSender("https://mail.example.com/send", "key-1", "no-reply@example.com")

    await sender.send("to@example.com", "Hello", "<p>Hi</p>")
    with pytest.raises(EmailDeliveryError):
        await sender.send("to@example.com", "Hello", "<p>Hi</p>")

    assert requests[0].headers["Authorization"] == "Bearer key-1"
