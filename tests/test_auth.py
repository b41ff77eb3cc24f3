from datetime import datetime, timedelta

from jose import jwt

from config import settings

from conftest import PASSWORD, auth_headers


async def test_login_with_email(client, admin):
    response = await client.post("/api/auth/login", json={"email": admin.email, "password": PASSWORD})
    assert response.status_code == 200
    body = response.json()
    assert body["token"]
    assert body["user"]["username"] == admin.username
    assert "hashed_password" not in body["user"]


async def test_login_with_username(client, admin):
    response = await client.post("/api/auth/login", json={"username": admin.username, "password": PASSWORD})
    assert response.status_code == 200


async def test_login_wrong_password(client, admin):
    response = await client.post("/api/auth/login", json={"email": admin.email, "password": "nope"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"


async def test_login_inactive_user(client, db, admin):
    admin.is_active = False
    await db.commit()
    response = await client.post("/api/auth/login", json={"email": admin.email, "password": PASSWORD})
    assert response.status_code == 401


async def test_login_requires_identifier(client):
    response = await client.post("/api/auth/login", json={"password": PASSWORD})
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


async def test_profile(client, admin):
    response = await client.get("/api/auth/profile", headers=auth_headers(admin))
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["id"] == admin.id
    assert body["cafe"]["slug"] == "t1"
    assert body["subscription"]["plan"] == "FREE"
    assert body["features"]["orders"] is True
    assert body["features"]["analytics"] is False
    assert body["roleView"]["role"] == "admin"


async def test_no_token(client, cafe):
    response = await client.get("/api/auth/profile")
    assert response.status_code == 401
    assert response.json()["code"] == "NO_TOKEN"


async def test_garbage_token(client, cafe):
    response = await client.get("/api/auth/profile", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"


async def test_token_signed_with_other_secret(client, admin):
    token = jwt.encode(
        {"userId": admin.id, "exp": datetime.utcnow() + timedelta(minutes=5)},
        "another-secret",
        algorithm=settings.ALGORITHM
    )
    response = await client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"


async def test_token_without_user_id(client, admin):
    token = jwt.encode(
        {"sub": "someone", "exp": datetime.utcnow() + timedelta(minutes=5)},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )
    response = await client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["code"] == "VERIFICATION_FAILED"


async def test_token_for_deleted_user(client, db, admin):
    headers = auth_headers(admin)
    await db.delete(admin)
    await db.commit()
    response = await client.get("/api/auth/profile", headers=headers)
    assert response.status_code == 401
    assert response.json()["code"] == "USER_NOT_FOUND"


async def test_token_expired_beyond_skew(client, admin):
    response = await client.get(
        "/api/auth/profile",
        headers=auth_headers(admin, expires_delta=timedelta(minutes=-12))
    )
    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_EXPIRED"


async def test_token_expired_within_skew_is_accepted(client, admin):
    response = await client.get(
        "/api/auth/profile",
        headers=auth_headers(admin, expires_delta=timedelta(minutes=-9))
    )
    assert response.status_code == 200


async def test_auth_limiter_blocks_sixth_failed_login(client, admin):
    payload = {"email": admin.email, "password": "wrong-password"}
    for _ in range(5):
        response = await client.post("/api/auth/login", json=payload)
        assert response.status_code == 401

    response = await client.post("/api/auth/login", json=payload)
    assert response.status_code == 429
    body = response.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["retryAfter"] == 900
    assert response.headers["Retry-After"] == "900"
    assert "X-RateLimit-Limit" not in response.headers


async def test_auth_limit_is_shared_with_customer_portal(client, cafe):
    for _ in range(5):
        await client.get("/api/customer/login/999?cafe_slug=t1")
    response = await client.post("/api/auth/login", json={"email": "x@example.com", "password": "x"})
    assert response.status_code == 429


async def test_successful_login_carries_rate_limit_headers(client, admin):
    response = await client.post("/api/auth/login", json={"email": admin.email, "password": PASSWORD})
    assert response.status_code == 200
    assert response.headers["RateLimit-Limit"] == "5"
    assert response.headers["RateLimit-Remaining"] == "4"
    assert 0 < int(response.headers["RateLimit-Reset"]) <= 900
    assert "X-RateLimit-Remaining" not in response.headers


async def test_platform_routes_share_the_api_bucket(client, super_admin):
    headers = auth_headers(super_admin)
    response = await client.get("/api/admin/cafes", headers=headers)
    assert response.headers["RateLimit-Limit"] == "200"
    assert response.headers["RateLimit-Remaining"] == "199"

    response = await client.get("/api/admin/features", headers=headers)
    assert response.headers["RateLimit-Remaining"] == "198"


async def test_server_time(client):
    response = await client.get("/api/server/time")
    assert response.status_code == 200
    assert response.json()["serverTime"].endswith("Z")


async def test_health(client):
    response = await client.get("/health")
    assert response.json()["status"] == "healthy"


async def test_unknown_route_uses_error_envelope(client):
    response = await client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json()["code"] == "HTTP_404"
