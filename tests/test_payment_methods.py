import pytest
from sqlalchemy import select

import database
import payment_methods_api
from models import PaymentMethod
from payment_methods_api import reorder_payment_methods

from conftest import auth_headers


async def display_orders(tenant_id: int) -> dict:
    async with database.async_session_maker() as session:
        result = await session.execute(
            select(PaymentMethod.id, PaymentMethod.display_order).where(PaymentMethod.tenant_id == tenant_id)
        )
        return dict(result.all())


@pytest.fixture
async def three_methods(db, cafe):
    db.add(PaymentMethod(tenant_id=cafe.id, name="Card", code="card", display_order=3))
    await db.commit()
    result = await db.execute(
        select(PaymentMethod.id).where(PaymentMethod.tenant_id == cafe.id).order_by(PaymentMethod.display_order)
    )
    return list(result.scalars().all())


async def test_new_cafe_has_default_payment_methods(client, owner):
    response = await client.get("/api/cafes/t1/payment-methods", headers=auth_headers(owner))
    assert response.status_code == 200
    assert [m["code"] for m in response.json()] == ["cash", "upi"]


async def test_reorder(client, owner, three_methods):
    first, second, third = three_methods
    response = await client.post(
        "/api/cafes/t1/payment-methods/reorder",
        json={"ids": [third, first, second]},
        headers=auth_headers(owner)
    )
    assert response.status_code == 200
    assert [m["id"] for m in response.json()] == [third, first, second]


async def test_reorder_rolls_back_when_an_update_fails(db, cafe, three_methods, monkeypatch):
    first, second, third = three_methods
    tenant_id = cafe.id
    before = await display_orders(tenant_id)

    real_set_display_order = payment_methods_api.set_display_order
    calls = []

    async def failing_set_display_order(session, tenant_id, method_id, display_order):
        calls.append(method_id)
        if len(calls) == 2:
            raise RuntimeError("simulated failure")
        await real_set_display_order(session, tenant_id, method_id, display_order)

    monkeypatch.setattr(payment_methods_api, "set_display_order", failing_set_display_order)

    with pytest.raises(RuntimeError):
        await reorder_payment_methods(db, tenant_id, [third, first, second])

    assert calls == [third, first]
    assert await display_orders(tenant_id) == before


async def test_reorder_with_foreign_id_changes_nothing(client, db, cafe, other_cafe, owner, three_methods):
    result = await db.execute(select(PaymentMethod.id).where(PaymentMethod.tenant_id == other_cafe.id).limit(1))
    foreign_id = result.scalar_one()
    first, second, third = three_methods
    before = await display_orders(cafe.id)

    response = await client.post(
        "/api/cafes/t1/payment-methods/reorder",
        json={"ids": [third, foreign_id, first, second]},
        headers=auth_headers(owner)
    )
    assert response.status_code == 404
    assert response.json()["code"] == "PAYMENT_METHOD_NOT_FOUND"
    assert await display_orders(cafe.id) == before


async def test_reorder_rejects_duplicate_ids(client, owner, three_methods):
    first = three_methods[0]
    response = await client.post(
        "/api/cafes/t1/payment-methods/reorder",
        json={"ids": [first, first]},
        headers=auth_headers(owner)
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REORDER"


async def test_duplicate_code_conflict(client, owner):
    response = await client.post(
        "/api/cafes/t1/payment-methods",
        json={"name": "Cash again", "code": "CASH"},
        headers=auth_headers(owner)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_PAYMENT_METHOD"


async def test_admin_can_view_but_not_change(client, admin):
    headers = auth_headers(admin)
    assert (await client.get("/api/cafes/t1/payment-methods", headers=headers)).status_code == 200

    response = await client.post(
        "/api/cafes/t1/payment-methods",
        json={"name": "Wallet", "code": "wallet"},
        headers=headers
    )
    assert response.status_code == 403


async def test_toggle(client, owner, three_methods):
    method_id = three_methods[0]
    response = await client.patch(
        f"/api/cafes/t1/payment-methods/{method_id}/toggle", headers=auth_headers(owner)
    )
    assert response.status_code == 200
    assert response.json()["is_active"] is False
