import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="cafe-pos-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp}/test.db"
os.environ["UPLOAD_DIR"] = os.path.join(_tmp, "uploads")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["FEATURE_CACHE_TTL_SECONDS"] = "0"
os.environ["ANALYTICS_SCHEDULER_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "true"
os.environ["RATE_LIMIT_GENERAL_ENABLED"] = "false"

from datetime import timedelta
from typing import Optional

import pytest
from httpx import AsyncClient, ASGITransport

import database
from auth import create_access_token
from database import Base, engine, async_session_maker
from feature_service import feature_cache
from identity_store import create_user
from main import app
from migrations.seed_features import seed
from models import Tenant, User, UserRole
from rate_limiter import limiter
from tenant_store import create_tenant

PASSWORD = "correct-horse-42"


@pytest.fixture(autouse=True)
async def setup_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session_maker() as session:
        await seed(session)

    limiter.reset()
    feature_cache.clear()
    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db():
    async with database.async_session_maker() as session:
        yield session


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def make_cafe(
    session,
    slug: str,
    plan: str = "FREE",
    status: str = "active",
    onboarded: bool = True
) -> Tenant:
    tenant = await create_tenant(session, name=slug.upper(), slug=slug)
    tenant.subscription_plan = plan
    tenant.subscription_status = status
    tenant.is_onboarded = onboarded
    await session.commit()
    await session.refresh(tenant)
    return tenant


async def make_user(session, username: str, role: str = "admin", tenant: Optional[Tenant] = None) -> User:
    return await create_user(
        session,
        email=f"{username}@example.com",
        username=username,
        password=PASSWORD,
        role=role,
        tenant_id=tenant.id if tenant else None,
        full_name=username.title()
    )


def auth_headers(user: User, expires_delta: Optional[timedelta] = None) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, expires_delta)}"}


@pytest.fixture
async def cafe(db):
    return await make_cafe(db, "t1")


@pytest.fixture
async def other_cafe(db):
    return await make_cafe(db, "t2")


@pytest.fixture
async def admin(db, cafe):
    return await make_user(db, "admin1", UserRole.ADMIN.value, cafe)


@pytest.fixture
async def owner(db, cafe):
    return await make_user(db, "owner1", UserRole.USER.value, cafe)


@pytest.fixture
async def super_admin(db):
    return await make_user(db, "root", UserRole.SUPERADMIN.value)
