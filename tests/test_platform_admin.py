from sqlalchemy import select

from models import ImpersonationAuditLog

from conftest import PASSWORD, auth_headers


async def test_cafe_admin_cannot_use_platform_api(client, admin):
    response = await client.get("/api/admin/cafes", headers=auth_headers(admin))
    assert response.status_code == 403
    assert response.json()["code"] == "ROLE_FORBIDDEN"


async def test_create_cafe_with_admin(client, super_admin):
    response = await client.post(
        "/api/admin/cafes",
        json={
            "name": "Brew Lab",
            "slug": "brew-lab",
            "admin_email": "lab@example.com",
            "admin_username": "labadmin",
            "admin_password": PASSWORD,
        },
        headers=auth_headers(super_admin)
    )
    assert response.status_code == 201
    body = response.json()
    assert body["cafe"]["slug"] == "brew-lab"
    assert body["cafe"]["subscription_plan"] == "FREE"
    assert body["admin"]["role"] == "admin"

    response = await client.post("/api/auth/login", json={"email": "lab@example.com", "password": PASSWORD})
    assert response.status_code == 200


async def test_create_cafe_rejects_short_password(client, super_admin):
    response = await client.post(
        "/api/admin/cafes",
        json={
            "name": "Brew Lab",
            "slug": "brew-lab",
            "admin_email": "lab@example.com",
            "admin_username": "labadmin",
            "admin_password": "short",
        },
        headers=auth_headers(super_admin)
    )
    assert response.status_code == 400
    assert response.json()["code"] == "PASSWORD_TOO_SHORT"


async def test_subscription_change_and_audit_read(client, cafe, super_admin):
    headers = auth_headers(super_admin)
    response = await client.put(f"/api/admin/cafes/{cafe.id}/subscription", json={"plan": "PRO"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["plan"] == "PRO"

    response = await client.get("/api/admin/audit/subscriptions", params={"cafe_id": cafe.id}, headers=headers)
    entries = response.json()
    assert len(entries) == 1
    assert entries[0]["action_type"] == "PLAN_CHANGED"
    assert entries[0]["changed_by"] == super_admin.id


async def test_invalid_plan(client, cafe, super_admin):
    response = await client.put(
        f"/api/admin/cafes/{cafe.id}/subscription", json={"plan": "GOLD"}, headers=auth_headers(super_admin)
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_PLAN"


async def test_feature_override_endpoints(client, cafe, super_admin):
    headers = auth_headers(super_admin)

    response = await client.post(
        f"/api/admin/cafes/{cafe.id}/features/analytics", json={"enabled": "1"}, headers=headers
    )
    assert response.status_code == 200
    by_key = {f["key"]: f for f in response.json()["features"]}
    assert by_key["analytics"]["resolved"] == {"enabled": True, "source": "override"}

    response = await client.delete(f"/api/admin/cafes/{cafe.id}/features/analytics", headers=headers)
    by_key = {f["key"]: f for f in response.json()["features"]}
    assert by_key["analytics"]["resolved"] == {"enabled": False, "source": "plan"}

    response = await client.post(
        f"/api/admin/cafes/{cafe.id}/features/teleportation", json={"enabled": True}, headers=headers
    )
    assert response.status_code == 400
    assert response.json()["code"] == "UNKNOWN_FEATURE"


async def test_feature_catalog(client, super_admin):
    response = await client.get("/api/admin/features", headers=auth_headers(super_admin))
    assert response.status_code == 200
    assert "advanced_reports" in {f["key"] for f in response.json()}


async def test_deactivate_cafe_is_soft(client, db, cafe, super_admin, admin):
    headers = auth_headers(super_admin)
    response = await client.delete(f"/api/admin/cafes/{cafe.id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    response = await client.get(f"/api/admin/cafes/{cafe.id}", headers=headers)
    assert response.status_code == 200

    response = await client.get("/api/cafes/t1/orders", headers=auth_headers(admin))
    assert response.status_code == 404


async def test_impersonation_is_audited(client, db, cafe, super_admin):
    headers = auth_headers(super_admin)
    headers["User-Agent"] = "support-console"

    response = await client.post("/api/admin/impersonate/t1", headers=headers)
    assert response.status_code == 200
    assert response.json()["cafe"]["slug"] == "t1"
    await client.post("/api/admin/impersonate/t1/end", headers=headers)

    entries = (await db.execute(
        select(ImpersonationAuditLog).order_by(ImpersonationAuditLog.id)
    )).scalars().all()
    assert [e.action_type for e in entries] == ["IMPERSONATION_STARTED", "IMPERSONATION_ENDED"]
    assert entries[0].super_admin_email == super_admin.email
    assert entries[0].cafe_slug == "t1"
    assert entries[0].user_agent == "support-console"
    assert entries[0].ip_address == "127.0.0.1"

    response = await client.get(
        "/api/admin/audit/impersonations", params={"action_type": "IMPERSONATION_ENDED"}, headers=headers
    )
    assert len(response.json()) == 1


async def test_update_cafe(client, cafe, super_admin):
    response = await client.put(
        f"/api/admin/cafes/{cafe.id}", json={"name": "Renamed"}, headers=auth_headers(super_admin)
    )
    assert response.status_code == 200
    assert response.json()["name"] == "Renamed"


async def test_duplicate_admin_identity_keeps_its_code(client, super_admin):
    response = await client.post(
        "/api/admin/cafes",
        json={
            "name": "Brew Lab",
            "slug": "brew-lab",
            "admin_email": "lab@example.com",
            "admin_username": super_admin.username,
            "admin_password": PASSWORD,
        },
        headers=auth_headers(super_admin)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_IDENTITY"
