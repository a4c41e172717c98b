import pytest

from conftest import auth_headers


@pytest.fixture
async def organization(make_organization):
    return await make_organization("Blue Wave Pools")


@pytest.fixture
async def admin(make_user, organization):
    return await make_user(organization, role="org_admin", email="owner@bluewave.com")


async def test_me(client, admin, organization):
    response = await client.get("/api/users/me", headers=auth_headers(admin))

    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "org_admin"
    assert body["organization"] == {"id": organization.id, "name": "Blue Wave Pools"}


async def test_update_me(client, admin):
    response = await client.patch("/api/users/me", json={"name": "Owner Person"}, headers=auth_headers(admin))

    assert response.status_code == 200
    assert response.json()["name"] == "Owner Person"


async def test_list_users_is_scoped_to_the_organization(client, admin, organization, make_user, make_organization):
    teammate = await make_user(organization, role="technician")
    outsider = await make_user(await make_organization("Other Pools"), role="technician")

    response = await client.get("/api/users", headers=auth_headers(admin))

    ids = {user["id"] for user in response.json()}
    assert admin.id in ids
    assert teammate.id in ids
    assert outsider.id not in ids


async def test_technicians_cannot_list_users(client, make_user, organization):
    technician = await make_user(organization, role="technician")

    response = await client.get("/api/users", headers=auth_headers(technician))

    assert response.status_code == 403
    assert response.json()["detail"] == "You don't have permission to view users"


async def test_change_role(client, admin, make_user, organization):
    technician = await make_user(organization, role="technician")

    promoted = await client.patch(f"/api/users/{technician.id}/role", json={"role": "manager"}, headers=auth_headers(admin))
    escalated = await client.patch(
        f"/api/users/{technician.id}/role", json={"role": "system_admin"}, headers=auth_headers(admin)
    )
    own = await client.patch(f"/api/users/{admin.id}/role", json={"role": "client"}, headers=auth_headers(admin))

    assert promoted.status_code == 200
    assert promoted.json()["role"] == "manager"
    assert escalated.status_code == 403
    assert own.status_code == 400


async def test_cannot_touch_users_of_other_organizations(client, admin, make_user, make_organization):
    outsider = await make_user(await make_organization("Other Pools"), role="technician")

    response = await client.patch(f"/api/users/{outsider.id}/role", json={"role": "manager"}, headers=auth_headers(admin))

    assert response.status_code == 404


async def test_deactivate_user(client, admin, make_user, organization):
    technician = await make_user(organization, role="technician")

    response = await client.delete(f"/api/users/{technician.id}", headers=auth_headers(admin))
    after = await client.get("/api/users/me", headers=auth_headers(technician))

    assert response.status_code == 200
    assert after.status_code == 401


async def test_org_admin_cannot_demote_or_deactivate_a_system_admin(client, admin, make_user, organization):
    system_admin = await make_user(organization, role="system_admin")

    demoted = await client.patch(
        f"/api/users/{system_admin.id}/role", json={"role": "technician"}, headers=auth_headers(admin)
    )
    deactivated = await client.delete(f"/api/users/{system_admin.id}", headers=auth_headers(admin))
    after = await client.get("/api/users/me", headers=auth_headers(system_admin))

    assert demoted.status_code == 403
    assert deactivated.status_code == 403
    assert after.status_code == 200
    assert after.json()["role"] == "system_admin"


async def test_current_organization(client, admin, organization, make_user):
    await make_user(organization, role="technician")

    response = await client.get("/api/organizations/current", headers=auth_headers(admin))

    assert response.status_code == 200
    assert response.json()["name"] == "Blue Wave Pools"
    assert response.json()["memberCount"] == 2


async def test_update_current_organization(client, admin, make_user, organization):
    manager = await make_user(organization, role="manager")

    updated = await client.patch(
        "/api/organizations/current", json={"name": "Blue Wave Pool Co", "phone": "555-0100"}, headers=auth_headers(admin)
    )
    denied = await client.patch("/api/organizations/current", json={"name": "Mine"}, headers=auth_headers(manager))

    assert updated.status_code == 200
    assert updated.json()["name"] == "Blue Wave Pool Co"
    assert updated.json()["slug"] == organization.slug
    assert denied.status_code == 403


async def test_my_permissions(client, make_user, organization):
    vendor = await make_user(organization, role="vendor")

    response = await client.get("/api/permissions/me", headers=auth_headers(vendor))

    body = response.json()
    assert body["role"] == "vendor"
    assert body["permissions"]["inventory"]["view_inventory"] is True
    assert body["permissions"]["inventory"]["edit_inventory"] is False
    assert sorted(body["visibleCategories"]) == ["communications", "inventory", "invoices"]


async def test_permission_check(client, make_user, organization):
    technician = await make_user(organization, role="technician")

    allowed = await client.post(
        "/api/permissions/check", json={"category": "repairs", "feature": "create_repairs"}, headers=auth_headers(technician)
    )
    denied = await client.post(
        "/api/permissions/check", json={"category": "billing", "feature": "manage_subscription"}, headers=auth_headers(technician)
    )
    unknown = await client.post(
        "/api/permissions/check", json={"category": "rockets", "feature": "launch"}, headers=auth_headers(technician)
    )

    assert allowed.json()["allowed"] is True
    assert denied.json()["allowed"] is False
    assert unknown.json()["allowed"] is False


async def test_role_tables(client, admin, make_user, organization):
    technician = await make_user(organization, role="technician")

    roles = await client.get("/api/permissions/roles", headers=auth_headers(admin))
    vendor = await client.get("/api/permissions/roles/vendor", headers=auth_headers(admin))
    missing = await client.get("/api/permissions/roles/wizard", headers=auth_headers(admin))
    forbidden = await client.get("/api/permissions/roles/vendor", headers=auth_headers(technician))

    assert "system_admin" in roles.json()["roles"]
    assert "manage_users" in roles.json()["categories"]["users"]
    assert vendor.json()["permissions"]["invoices"]["view_invoices"] is True
    assert missing.status_code == 404
    assert forbidden.status_code == 403


async def test_health(client):
    response = await client.get("/health")

    assert response.json() == {"status": "healthy"}
