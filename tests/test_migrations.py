import json

import pytest
from sqlalchemy import inspect, select, text

from database import engine
from feature_service import get_overrides
from migrations import migrate_enabled_modules, backfill_tenant_defaults, add_checkout_columns
from migrations.runner import MIGRATIONS, REQUIRED_SCHEMA_VERSION, run_migrations, get_schema_version, get_applied
from migrations.seed_features import seed, FEATURES
from models import Feature, PaymentMethod, Tenant, TenantSettings, TenantFeatureOverride

from conftest import make_cafe


async def _columns(table: str) -> set:
    async with engine.connect() as conn:
        return await conn.run_sync(lambda sync_conn: {c["name"] for c in inspect(sync_conn).get_columns(table)})


async def test_seed_is_idempotent_and_keeps_edits(db):
    feature = (await db.execute(select(Feature).where(Feature.key == "analytics"))).scalar_one()
    feature.default_free = True
    await db.commit()

    assert await seed(db) == 0
    await db.refresh(feature)
    assert feature.default_free is True
    assert len((await db.execute(select(Feature))).scalars().all()) == len(FEATURES)


async def test_enabled_modules_are_copied_into_overrides(db):
    first = await make_cafe(db, "t1")
    second = await make_cafe(db, "t2")
    db.add(TenantFeatureOverride(tenant_id=second.id, feature_key="analytics", enabled=False))
    await db.commit()

    async with engine.begin() as conn:
        await conn.execute(text("ALTER TABLE tenants ADD COLUMN enabled_modules TEXT"))
        await conn.execute(
            text("UPDATE tenants SET enabled_modules = :modules WHERE id = :id"),
            {"modules": json.dumps({"analytics": 1, "inventory": "false", "teleportation": True}), "id": first.id}
        )
        await conn.execute(
            text("UPDATE tenants SET enabled_modules = :modules WHERE id = :id"),
            {"modules": json.dumps({"analytics": True}), "id": second.id}
        )

    await migrate_enabled_modules.migrate(engine)

    assert await get_overrides(db, first.id) == {"analytics": True, "inventory": False}
    # an existing override row wins over the legacy value
    assert await get_overrides(db, second.id) == {"analytics": False}
    assert "enabled_modules" not in await _columns("tenants")


async def test_enabled_modules_migration_without_column_is_noop(db):
    await make_cafe(db, "t1")
    await migrate_enabled_modules.migrate(engine)
    assert (await db.execute(select(TenantFeatureOverride))).scalars().all() == []


async def test_backfill_creates_missing_defaults(db):
    tenant = Tenant(name="Legacy", slug="legacy", subscription_plan="FREE", subscription_status="active")
    db.add(tenant)
    await db.commit()

    assert await backfill_tenant_defaults.backfill(db) == 1
    assert (await db.execute(
        select(TenantSettings.id).where(TenantSettings.tenant_id == tenant.id)
    )).scalar_one_or_none() is not None
    assert len((await db.execute(
        select(PaymentMethod).where(PaymentMethod.tenant_id == tenant.id)
    )).scalars().all()) == 2

    assert await backfill_tenant_defaults.backfill(db) == 0


async def test_runner_records_and_reports_version():
    assert await get_schema_version(engine) == 0

    ran = await run_migrations(engine)
    assert ran == [name for name, _ in MIGRATIONS]
    assert await get_schema_version(engine) == REQUIRED_SCHEMA_VERSION
    assert await run_migrations(engine) == []


async def test_runner_version_stops_at_gap():
    await run_migrations(engine, ["001_initial_schema", "003_migrate_enabled_modules"])
    assert set(await get_applied(engine)) == {"001_initial_schema", "003_migrate_enabled_modules"}
    assert await get_schema_version(engine) == 1


async def test_runner_rejects_unknown_names():
    with pytest.raises(ValueError):
        await run_migrations(engine, ["999_nope"])


async def test_checkout_columns_are_added_when_missing():
    async with engine.begin() as conn:
        await conn.execute(text("ALTER TABLE orders DROP COLUMN points_redeemed"))
        await conn.execute(text("ALTER TABLE tenant_settings DROP COLUMN tax_name"))
        await conn.execute(text("DROP TABLE categories"))

    await add_checkout_columns.migrate(engine)

    assert "points_redeemed" in await _columns("orders")
    assert "tax_name" in await _columns("tenant_settings")
    assert "sort_order" in await _columns("categories")

    # second run finds nothing to add
    await add_checkout_columns.migrate(engine)
