from datetime import timedelta

import pytest
from sqlalchemy import select

from app.features.invitations.models import InvitationStatus, InvitationToken
from app.features.invitations.store import InvitationTokenStore
from app.features.users.models import User
from app.utils import utcnow

from conftest import auth_headers


@pytest.fixture
async def organization(make_organization):
    return await make_organization("Blue Wave Pools")


@pytest.fixture
async def admin(make_user, organization):
    return await make_user(organization, role="org_admin", email="owner@bluewave.com")


async def invite(client, admin, **overrides):
    body = {"name": "Terry Tech", "email": "terry@example.com", "role": "technician"}
    body.update(overrides)
    return await client.post("/api/invitations", json=body, headers=auth_headers(admin))


async def test_create_invitation_sends_email(client, admin, organization, email_sender):
    response = await invite(client, admin)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["emailSent"] is True
    assert body["invitation"]["email"] == "terry@example.com"
    assert body["invitation"]["role"] == "technician"
    assert body["invitation"]["organizationId"] == organization.id
    assert body["invitation"]["status"] == "pending"
    assert "token" not in body["invitation"]
    assert body["inviteLink"].startswith("http")

    assert len(email_sender.sent) == 1
    message = email_sender.sent[0]
    assert message["to"] == "terry@example.com"
    assert "Blue Wave Pools" in message["subject"]
    assert body["inviteLink"] in message["html"]


async def test_email_failure_does_not_fail_the_invitation(client, admin, email_sender, session_factory):
    email_sender.fail = True

    response = await invite(client, admin)

    assert response.status_code == 201
    assert response.json()["emailSent"] is False
    assert response.json()["emailWarning"]
    async with session_factory() as db:
        assert await db.scalar(select(InvitationToken).where(InvitationToken.email == "terry@example.com"))


async def test_non_admins_cannot_invite(client, make_user, organization):
    technician = await make_user(organization, role="technician")

    response = await invite(client, technician)

    assert response.status_code == 403


async def test_cannot_invite_into_another_organization(client, admin, make_organization):
    other = await make_organization("Other Pools")

    response = await invite(client, admin, organizationId=other.id)

    assert response.status_code == 403
    assert response.json()["success"] is False


async def test_org_admin_cannot_hand_out_system_admin(client, admin):
    response = await invite(client, admin, role="system_admin")

    assert response.status_code == 403


async def test_unknown_role_is_rejected(client, admin):
    response = await invite(client, admin, role="overlord")

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_role"


async def test_duplicate_invitations_and_existing_users_conflict(client, admin):
    assert (await invite(client, admin)).status_code == 201

    again = await invite(client, admin, email="TERRY@example.com")
    existing = await invite(client, admin, email="owner@bluewave.com")

    assert again.status_code == 409
    assert existing.status_code == 409


async def test_invalid_body_is_a_validation_error(client, admin):
    response = await invite(client, admin, email="not-an-email")

    assert response.status_code == 400
    assert "email" in response.json()


async def test_list_and_cancel(client, admin):
    created = (await invite(client, admin)).json()["invitation"]

    listed = await client.get("/api/invitations", headers=auth_headers(admin))
    assert [item["id"] for item in listed.json()] == [created["id"]]
    assert listed.json()[0]["tokenPreview"].endswith("...")

    cancelled = await client.delete(f"/api/invitations/{created['id']}", headers=auth_headers(admin))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "expired"


async def test_cancel_is_scoped_to_the_callers_organization(client, admin, make_organization, make_user):
    created = (await invite(client, admin)).json()["invitation"]
    other_org = await make_organization("Other Pools")
    other_admin = await make_user(other_org, role="org_admin")

    response = await client.delete(f"/api/invitations/{created['id']}", headers=auth_headers(other_admin))

    assert response.status_code == 404


async def test_cancel_accepted_invitation_conflicts(client, admin, organization, db):
    invitation = await InvitationTokenStore(db).create("z@example.com", "Z", "client", organization.id, admin.id)
    await InvitationTokenStore(db).mark_accepted(invitation.id)
    await db.commit()

    response = await client.delete(f"/api/invitations/{invitation.id}", headers=auth_headers(admin))

    assert response.status_code == 409


async def test_resend_rotates_the_link(client, admin, email_sender):
    created = (await invite(client, admin)).json()

    response = await client.post(f"/api/invitations/{created['invitation']['id']}/resend", headers=auth_headers(admin))

    assert response.status_code == 200
    assert response.json()["inviteLink"] != created["inviteLink"]
    assert len(email_sender.sent) == 2


async def test_verify_valid_token(client, organization, db):
    invitation = await InvitationTokenStore(db).create("v@example.com", "Vic", "client", organization.id, None)
    await db.commit()

    response = await client.get("/api/invitations/verify", params={"token": invitation.token})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["invitation"]["name"] == "Vic"
    assert body["invitation"]["email"] == "v@example.com"
    assert body["invitation"]["role"] == "client"
    assert body["invitation"]["organization"] == {"id": organization.id, "name": "Blue Wave Pools"}
    assert body["invitation"]["expiresAt"]


async def test_verify_distinguishes_failures(client, organization, db):
    expired = await InvitationTokenStore(db).create("x@example.com", "X", "client", organization.id, None)
    expired.expires_at = utcnow() - timedelta(seconds=1)
    used = await InvitationTokenStore(db).create("y@example.com", "Y", "client", organization.id, None)
    await InvitationTokenStore(db).mark_accepted(used.id)
    await db.commit()

    missing = await client.get("/api/invitations/verify", params={"token": "nope"})
    too_late = await client.get("/api/invitations/verify", params={"token": expired.token})
    spent = await client.get("/api/invitations/verify", params={"token": used.token})

    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Invitation not found", "reason": "not_found"}
    assert too_late.status_code == 400
    assert too_late.json()["reason"] == "expired"
    assert spent.status_code == 400
    assert spent.json()["reason"] == "already_used"


async def test_accept_creates_password_account(client, organization, db, session_factory):
    invitation = await InvitationTokenStore(db).create("new.hire@example.com", "New Hire", "office_staff", organization.id, None)
    await db.commit()

    response = await client.post(
        "/api/invitations/accept", json={"token": invitation.token, "password": "s3cret-pass"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["redirectTo"] == "/dashboard"
    assert body["user"]["role"] == "office_staff"
    assert body["user"]["organizationId"] == organization.id
    assert body["user"]["username"] == "new.hire"
    assert "session" in response.cookies

    async with session_factory() as check:
        user = await check.scalar(select(User).where(User.email == "new.hire@example.com"))
        assert user.password_hash and user.password_hash != "s3cret-pass"
        status = await check.scalar(select(InvitationToken.status).where(InvitationToken.id == invitation.id))
        assert status == InvitationStatus.ACCEPTED

    login = await client.post("/api/auth/login", json={"login": "new.hire@example.com", "password": "s3cret-pass"})
    assert login.status_code == 200


async def test_chosen_username_is_normalized_and_usable_for_login(client, organization, db):
    invitation = await InvitationTokenStore(db).create("casey@example.com", "Casey", "technician", organization.id, None)
    await db.commit()

    response = await client.post(
        "/api/invitations/accept",
        json={"token": invitation.token, "password": "s3cret-pass", "username": " CaseyT "},
    )
    login = await client.post("/api/auth/login", json={"login": "CaseyT", "password": "s3cret-pass"})

    assert response.status_code == 200
    assert response.json()["user"]["username"] == "caseyt"
    assert login.status_code == 200


async def test_accept_twice_fails_the_second_time(client, organization, db):
    invitation = await InvitationTokenStore(db).create("twice@example.com", "Twice", "client", organization.id, None)
    await db.commit()
    body = {"token": invitation.token, "password": "s3cret-pass"}

    assert (await client.post("/api/invitations/accept", json=body)).status_code == 200
    second = await client.post("/api/invitations/accept", json=body)

    assert second.status_code == 400
    assert second.json()["code"] == "already_used"


async def test_accept_expired_invitation_marks_it_expired(client, organization, db, session_factory):
    invitation = await InvitationTokenStore(db).create("late@example.com", "Late", "client", organization.id, None)
    invitation.expires_at = utcnow() - timedelta(minutes=1)
    await db.commit()

    response = await client.post("/api/invitations/accept", json={"token": invitation.token, "password": "s3cret-pass"})

    assert response.status_code == 400
    assert response.json()["code"] == "expired"
    async with session_factory() as check:
        status = await check.scalar(select(InvitationToken.status).where(InvitationToken.id == invitation.id))
        assert status == InvitationStatus.EXPIRED
