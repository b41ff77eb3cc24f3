import pytest

from conftest import PASSWORD, auth_headers, make_cafe, make_user


@pytest.fixture
async def pro_cafe(db):
    return await make_cafe(db, "pro", plan="PRO")


@pytest.fixture
async def pro_owner(db, pro_cafe):
    return await make_user(db, "pro-owner", "user", pro_cafe)


def _new_user(username: str, **extra) -> dict:
    return {"email": f"{username}@example.com", "username": username, "password": PASSWORD, **extra}


async def test_free_plan_has_no_user_management(client, owner):
    response = await client.get("/api/cafes/t1/users", headers=auth_headers(owner))
    assert response.status_code == 403
    assert response.json()["code"] == "FEATURE_ACCESS_DENIED"


async def test_admin_needs_manage_users(client, db, pro_cafe):
    admin = await make_user(db, "pro-admin", "admin", pro_cafe)
    response = await client.get("/api/cafes/pro/users", headers=auth_headers(admin))
    assert response.status_code == 403
    assert response.json()["code"] == "ROLE_FORBIDDEN"


async def test_create_and_list_staff(client, pro_owner):
    headers = auth_headers(pro_owner)
    response = await client.post("/api/cafes/pro/users", json=_new_user("barista", role="chef"), headers=headers)
    assert response.status_code == 201
    body = response.json()
    assert body["role"] == "chef"
    assert body["tenant_id"] == pro_owner.tenant_id

    response = await client.get("/api/cafes/pro/users", headers=headers)
    assert {u["username"] for u in response.json()} == {"pro-owner", "barista"}


async def test_cannot_create_super_admin(client, pro_owner):
    response = await client.post(
        "/api/cafes/pro/users", json=_new_user("sneaky", role="superadmin"), headers=auth_headers(pro_owner)
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_ROLE"


async def test_short_password_rejected(client, pro_owner):
    payload = _new_user("barista")
    payload["password"] = "abc"
    response = await client.post("/api/cafes/pro/users", json=payload, headers=auth_headers(pro_owner))
    assert response.status_code == 400
    assert response.json()["code"] == "PASSWORD_TOO_SHORT"


async def test_users_of_other_cafes_are_invisible(client, db, pro_owner, cafe):
    stranger = await make_user(db, "stranger", "chef", cafe)
    headers = auth_headers(pro_owner)

    for method in ("get", "delete"):
        response = await client.request(method.upper(), f"/api/cafes/pro/users/{stranger.id}", headers=headers)
        assert response.status_code == 404
        assert response.json()["code"] == "USER_NOT_FOUND"


async def test_update_role_and_password(client, db, pro_owner, pro_cafe):
    chef = await make_user(db, "chef1", "chef", pro_cafe)
    headers = auth_headers(pro_owner)

    response = await client.put(
        f"/api/cafes/pro/users/{chef.id}",
        json={"role": "reception", "password": "brand-new-secret"},
        headers=headers
    )
    assert response.status_code == 200
    assert response.json()["role"] == "reception"

    response = await client.post("/api/auth/login", json={"username": "chef1", "password": "brand-new-secret"})
    assert response.status_code == 200


async def test_self_protection(client, pro_owner):
    headers = auth_headers(pro_owner)

    response = await client.put(f"/api/cafes/pro/users/{pro_owner.id}", json={"is_active": False}, headers=headers)
    assert response.json()["code"] == "SELF_DEACTIVATION"

    response = await client.delete(f"/api/cafes/pro/users/{pro_owner.id}", headers=headers)
    assert response.json()["code"] == "SELF_DELETION"


async def test_delete_staff(client, db, pro_owner, pro_cafe):
    chef = await make_user(db, "chef1", "chef", pro_cafe)
    headers = auth_headers(pro_owner)

    response = await client.delete(f"/api/cafes/pro/users/{chef.id}", headers=headers)
    assert response.status_code == 204
    response = await client.get(f"/api/cafes/pro/users/{chef.id}", headers=headers)
    assert response.status_code == 404


@pytest.fixture
async def staff_admin(client, db, pro_cafe, pro_owner):
    await client.put(
        "/api/cafes/pro/settings",
        json={"admin_can_manage_users": True, "admin_can_access_settings": False},
        headers=auth_headers(pro_owner)
    )
    return await make_user(db, "pro-admin", "admin", pro_cafe)


async def test_admin_cannot_promote_self(client, staff_admin):
    headers = auth_headers(staff_admin)
    response = await client.put(f"/api/cafes/pro/users/{staff_admin.id}", json={"role": "user"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "SELF_ROLE_CHANGE"

    response = await client.put("/api/cafes/pro/settings", json={"tax_rate": 1}, headers=headers)
    assert response.status_code == 403


async def test_admin_cannot_hand_out_owner_roles(client, db, pro_cafe, staff_admin):
    headers = auth_headers(staff_admin)
    for role in ("user", "admin"):
        response = await client.post("/api/cafes/pro/users", json=_new_user(f"new-{role}", role=role), headers=headers)
        assert response.status_code == 403
        assert response.json()["code"] == "ROLE_FORBIDDEN"

    chef = await make_user(db, "chef1", "chef", pro_cafe)
    response = await client.put(f"/api/cafes/pro/users/{chef.id}", json={"role": "user"}, headers=headers)
    assert response.status_code == 403

    response = await client.post("/api/cafes/pro/users", json=_new_user("chef2", role="chef"), headers=headers)
    assert response.status_code == 201


async def test_admin_cannot_touch_owner_accounts(client, pro_owner, staff_admin):
    headers = auth_headers(staff_admin)
    response = await client.put(
        f"/api/cafes/pro/users/{pro_owner.id}", json={"password": "taken-over-123"}, headers=headers
    )
    assert response.status_code == 403

    response = await client.delete(f"/api/cafes/pro/users/{pro_owner.id}", headers=headers)
    assert response.status_code == 403


async def test_email_update_is_case_insensitive(client, db, pro_owner, pro_cafe):
    chef = await make_user(db, "chef1", "chef", pro_cafe)
    response = await client.put(
        f"/api/cafes/pro/users/{chef.id}", json={"email": "PRO-OWNER@Example.com"}, headers=auth_headers(pro_owner)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_IDENTITY"
