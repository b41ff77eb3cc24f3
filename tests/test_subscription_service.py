import pytest

from audit_service import list_subscription_audit, log_subscription_event, clamp_limit, MAX_LIMIT
from errors import InvalidPlan, InvalidStatus, ValidationFailed, CafeNotFound
from subscription_service import update_cafe_subscription, get_cafe_subscription

from conftest import make_cafe


async def test_plan_change_writes_exactly_one_audit_row(db, super_admin):
    tenant = await make_cafe(db, "t1")

    subscription = await update_cafe_subscription(db, tenant.id, plan="pro", changed_by=super_admin.id)
    assert subscription.plan == "PRO"

    entries = await list_subscription_audit(db, tenant_id=tenant.id)
    assert len(entries) == 1
    assert entries[0].action_type == "PLAN_CHANGED"
    assert (entries[0].previous_value, entries[0].new_value) == ("FREE", "PRO")
    assert entries[0].changed_by == super_admin.id


async def test_status_change_is_audited_as_activation(db):
    tenant = await make_cafe(db, "t1")

    await update_cafe_subscription(db, tenant.id, status="inactive")
    await update_cafe_subscription(db, tenant.id, status="active")

    entries = await list_subscription_audit(db, tenant_id=tenant.id)
    actions = sorted((e.action_type, e.previous_value, e.new_value) for e in entries)
    assert actions == [
        ("CAFE_ACTIVATED", "inactive", "active"),
        ("CAFE_DEACTIVATED", "active", "inactive"),
    ]


async def test_plan_and_status_change_together(db):
    tenant = await make_cafe(db, "t1")
    await update_cafe_subscription(db, tenant.id, plan="PRO", status="expired")

    entries = await list_subscription_audit(db, tenant_id=tenant.id)
    assert sorted(e.action_type for e in entries) == ["CAFE_DEACTIVATED", "PLAN_CHANGED"]


async def test_unchanged_values_are_not_audited(db):
    tenant = await make_cafe(db, "t1")
    await update_cafe_subscription(db, tenant.id, plan="FREE", status="active")
    assert await list_subscription_audit(db, tenant_id=tenant.id) == []


async def test_subscription_validation(db):
    tenant = await make_cafe(db, "t1")
    with pytest.raises(InvalidPlan):
        await update_cafe_subscription(db, tenant.id, plan="GOLD")
    with pytest.raises(InvalidStatus):
        await update_cafe_subscription(db, tenant.id, status="paused")
    with pytest.raises(ValidationFailed):
        await update_cafe_subscription(db, tenant.id)
    with pytest.raises(CafeNotFound):
        await update_cafe_subscription(db, 9999, plan="PRO")


async def test_missing_subscription_columns_default_to_free_active(db):
    tenant = await make_cafe(db, "t1")
    tenant.subscription_plan = None
    tenant.subscription_status = None
    await db.commit()

    subscription = await get_cafe_subscription(db, tenant.id)
    assert subscription.plan == "FREE"
    assert subscription.is_active


async def test_audit_write_failure_does_not_raise(monkeypatch):
    import database

    def broken_session_maker():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(database, "async_session_maker", broken_session_maker)
    assert await log_subscription_event(1, "PLAN_CHANGED", "FREE", "PRO") is False


async def test_audit_filters_and_pagination(db, super_admin):
    first = await make_cafe(db, "t1")
    second = await make_cafe(db, "t2")
    await update_cafe_subscription(db, first.id, plan="PRO", changed_by=super_admin.id)
    await update_cafe_subscription(db, first.id, plan="FREE")
    await update_cafe_subscription(db, second.id, status="inactive")

    assert len(await list_subscription_audit(db)) == 3
    assert len(await list_subscription_audit(db, tenant_id=first.id)) == 2
    assert len(await list_subscription_audit(db, actor_id=super_admin.id)) == 1
    assert len(await list_subscription_audit(db, action_type="CAFE_DEACTIVATED")) == 1
    assert len(await list_subscription_audit(db, limit=1, offset=1)) == 1


def test_clamp_limit():
    assert clamp_limit(None) == 100
    assert clamp_limit(0) == 1
    assert clamp_limit(5000) == MAX_LIMIT
