import pytest
from sqlalchemy import select

from app.features.invitations.store import InvitationTokenStore
from app.features.oauth.pending import OAuthIdentity, PendingOAuthUserCache
from app.features.organizations.models import Organization
from app.features.users.auth import decode_session_token
from app.features.users.models import User


@pytest.fixture
async def pending(db):
    await PendingOAuthUserCache(db).store(
        OAuthIdentity(
            id="108234",
            email="jordan@example.com",
            display_name="Jordan Diaz",
            photo_url="https://example.com/jordan.png",
            profile={"hd": "example.com"},
        )
    )
    await db.commit()
    return "108234"


async def test_pending_user_projection(client, pending):
    response = await client.get(f"/api/oauth/pending/{pending}")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "user": {
            "googleId": "108234",
            "email": "jordan@example.com",
            "displayName": "Jordan Diaz",
            "photoUrl": "https://example.com/jordan.png",
        },
    }


async def test_unknown_pending_user(client):
    response = await client.get("/api/oauth/pending/nope")

    assert response.status_code == 404
    assert response.json()["success"] is False


async def test_complete_registration_create(client, pending, session_factory):
    response = await client.post(
        "/api/oauth/complete-registration",
        json={"googleId": pending, "action": "create", "organizationName": "Jordan's Pool Care", "organizationType": "company"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["redirectTo"] == "/pricing"
    assert body["user"]["role"] == "org_admin"
    assert body["user"]["email"] == "jordan@example.com"
    assert decode_session_token(response.cookies["session"])["sub"] == body["user"]["id"]

    async with session_factory() as db:
        organization = await db.get(Organization, body["user"]["organizationId"])
        assert organization.slug == "jordan-s-pool-care"
        assert organization.trial_ends_at is not None


async def test_complete_registration_join(client, pending, make_organization, db):
    organization = await make_organization("Sunny Pools")
    invitation = await InvitationTokenStore(db).create("jordan@example.com", "Jordan", "technician", organization.id, None)
    await db.commit()

    response = await client.post(
        "/api/oauth/complete-registration",
        json={"googleId": pending, "action": "join", "invitationCode": invitation.token},
    )

    assert response.status_code == 200
    assert response.json()["redirectTo"] == "/dashboard"
    assert response.json()["user"]["role"] == "technician"
    assert response.json()["user"]["organizationId"] == organization.id


async def test_join_cannot_pick_a_role(client, pending, make_organization, db, session_factory):
    organization = await make_organization("Sunny Pools")
    invitation = await InvitationTokenStore(db).create("jordan@example.com", "Jordan", "client", organization.id, None)
    await db.commit()

    response = await client.post(
        "/api/oauth/complete-registration",
        json={"googleId": pending, "action": "join", "invitationCode": invitation.token, "role": "org_admin"},
    )

    assert response.status_code == 403
    assert response.json()["code"] == "unauthorized_intent"
    async with session_factory() as check:
        assert await check.scalar(select(User).where(User.email == "jordan@example.com")) is None


async def test_join_with_unknown_code(client, pending):
    response = await client.post(
        "/api/oauth/complete-registration",
        json={"googleId": pending, "action": "join", "invitationCode": "missing-token"},
    )

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Invitation not found", "code": "not_found"}


async def test_complete_registration_requires_intent_fields(client, pending):
    create = await client.post("/api/oauth/complete-registration", json={"googleId": pending, "action": "create"})
    join = await client.post("/api/oauth/complete-registration", json={"googleId": pending, "action": "join"})
    other = await client.post("/api/oauth/complete-registration", json={"googleId": pending, "action": "steal"})

    assert create.status_code == 400
    assert join.status_code == 400
    assert other.status_code == 400


async def test_double_submit_second_attempt_fails_harmlessly(client, pending, session_factory):
    body = {"googleId": pending, "action": "create", "organizationName": "Double Click Pools"}

    first = await client.post("/api/oauth/complete-registration", json=body)
    second = await client.post("/api/oauth/complete-registration", json=body)

    assert first.status_code == 200
    assert second.status_code == 404
    assert second.json()["code"] == "pending_user_not_found"
    async with session_factory() as db:
        organizations = (await db.execute(select(Organization))).scalars().all()
        assert [organization.name for organization in organizations] == ["Double Click Pools"]


async def test_verify_invitation_code(client, make_organization, db):
    organization = await make_organization("Sunny Pools")
    invitation = await InvitationTokenStore(db).create("sam@example.com", "Sam", "vendor", organization.id, None)
    await db.commit()

    ok = await client.get(f"/api/oauth/verify-invitation/{invitation.token}")
    missing = await client.get("/api/oauth/verify-invitation/unknown")

    assert ok.status_code == 200
    assert ok.json() == {
        "success": True,
        "invitationId": invitation.id,
        "organizationId": organization.id,
        "organizationName": "Sunny Pools",
        "role": "vendor",
        "email": "sam@example.com",
        "name": "Sam",
    }
    assert missing.status_code == 404
    assert missing.json()["success"] is False
