import re

import pytest
from sqlalchemy import select

import metrics_service
from models import Customer, MenuItem, CafeDailyMetrics

from conftest import auth_headers, make_cafe, make_user


@pytest.fixture
async def menu_item(db, cafe):
    item = MenuItem(tenant_id=cafe.id, name="Latte", category="Coffee", price=120.0)
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


@pytest.fixture
async def customer(db, cafe):
    customer = Customer(tenant_id=cafe.id, name="Asha", phone="9000000001")
    db.add(customer)
    await db.commit()
    await db.refresh(customer)
    return customer


async def test_create_order_prices_from_menu(client, owner, menu_item):
    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 2}], "tip_amount": 10},
        headers=auth_headers(owner)
    )
    assert response.status_code == 201
    body = response.json()
    assert re.fullmatch(r"ORD-\d{8}-[0-9A-F]{4}", body["order_number"])
    assert body["subtotal"] == 240.0
    assert body["tax_amount"] == 0.0
    assert body["total_amount"] == 250.0
    assert body["status"] == "pending"
    assert body["items"][0]["item_name"] == "Latte"


async def test_order_applies_tax_setting(client, owner, menu_item):
    headers = auth_headers(owner)
    await client.put("/api/cafes/t1/settings", json={"tax_rate": 5}, headers=headers)

    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 1}]},
        headers=headers
    )
    assert response.json()["tax_amount"] == 6.0
    assert response.json()["total_amount"] == 126.0


async def test_order_requires_onboarding(client, db):
    tenant = await make_cafe(db, "fresh", onboarded=False)
    owner = await make_user(db, "fresh-owner", "user", tenant)
    response = await client.post(
        "/api/cafes/fresh/orders",
        json={"items": [{"item_name": "Tea", "price": 20, "quantity": 1}]},
        headers=auth_headers(owner)
    )
    assert response.status_code == 403
    assert response.json()["code"] == "ONBOARDING_REQUIRED"


async def test_menu_item_of_other_cafe_is_rejected(client, db, other_cafe, owner):
    foreign = MenuItem(tenant_id=other_cafe.id, name="Mocha", price=150.0)
    db.add(foreign)
    await db.commit()

    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": foreign.id, "quantity": 1}]},
        headers=auth_headers(owner)
    )
    assert response.status_code == 404
    assert response.json()["code"] == "MENU_ITEM_NOT_FOUND"


async def test_completion_awards_loyalty_once(client, db, owner, menu_item, customer):
    headers = auth_headers(owner)
    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 2}], "customer_id": customer.id},
        headers=headers
    )
    order_id = response.json()["id"]

    response = await client.patch(
        f"/api/cafes/t1/orders/{order_id}/status", json={"status": "completed"}, headers=headers
    )
    assert response.status_code == 200
    body = response.json()
    assert body["points_awarded"] == 24
    assert body["loyaltyUpdate"] == {"pointsEarned": 24, "newTotalPoints": 24}

    response = await client.patch(
        f"/api/cafes/t1/orders/{order_id}/status", json={"status": "completed"}, headers=headers
    )
    assert response.json()["loyaltyUpdate"] is None

    await db.refresh(customer)
    assert customer.loyalty_points == 24
    assert customer.visit_count == 1
    assert customer.total_spent == 240.0


async def test_terminal_status_cannot_change(client, owner, menu_item):
    headers = auth_headers(owner)
    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 1}]},
        headers=headers
    )
    order_id = response.json()["id"]
    await client.patch(f"/api/cafes/t1/orders/{order_id}/status", json={"status": "cancelled"}, headers=headers)

    response = await client.patch(
        f"/api/cafes/t1/orders/{order_id}/status", json={"status": "preparing"}, headers=headers
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_STATUS_TRANSITION"


async def test_order_lifecycle_updates_daily_metrics(client, db, cafe, owner, menu_item):
    headers = auth_headers(owner)
    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 1}]},
        headers=headers
    )
    order_id = response.json()["id"]
    await client.patch(f"/api/cafes/t1/orders/{order_id}/status", json={"status": "completed"}, headers=headers)

    today = await metrics_service.get_today(db, cafe.id)
    assert today["total_orders"] == 1
    assert today["total_revenue"] == 120.0
    assert today["completed_orders"] == 1

    response = await client.delete(f"/api/cafes/t1/orders/{order_id}", headers=headers)
    assert response.status_code == 204

    today = await metrics_service.get_today(db, cafe.id)
    assert today["total_orders"] == 0
    assert today["completed_orders"] == 0
    assert today["total_revenue"] == 0.0


async def test_invoice_once_per_order(client, owner, menu_item):
    headers = auth_headers(owner)
    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 1}]},
        headers=headers
    )
    order_id = response.json()["id"]

    response = await client.post("/api/cafes/t1/invoices", json={"order_id": order_id}, headers=headers)
    assert response.status_code == 201
    invoice_number = response.json()["invoice_number"]
    assert invoice_number.startswith("INV-")

    response = await client.post("/api/cafes/t1/invoices", json={"order_id": order_id}, headers=headers)
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_INVOICE"

    response = await client.get(f"/api/cafes/t1/invoices/{invoice_number}", headers=headers)
    assert response.status_code == 200
    assert response.json()["total_amount"] == 120.0


async def test_chef_cannot_create_orders(client, db, cafe):
    chef = await make_user(db, "chef1", "chef", cafe)
    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"item_name": "Tea", "price": 20, "quantity": 1}]},
        headers=auth_headers(chef)
    )
    assert response.status_code == 403
    assert response.json()["code"] == "ROLE_FORBIDDEN"


async def test_extra_charge_and_split_payment(client, owner, menu_item):
    response = await client.post(
        "/api/cafes/t1/orders",
        json={
            "items": [{"menu_item_id": menu_item.id, "quantity": 1}],
            "payment_method": "cash",
            "extra_charge": 30,
            "extra_charge_note": "Delivery",
            "split_payment": True,
            "split_payment_method": "upi",
            "split_amount": 100,
        },
        headers=auth_headers(owner)
    )
    assert response.status_code == 201
    body = response.json()
    assert body["total_amount"] == 150.0
    assert body["extra_charge_note"] == "Delivery"
    assert body["split_payment"] is True
    assert body["split_payment_method"] == "upi"
    assert body["split_amount"] == 100.0


@pytest.mark.parametrize("split", [
    {"split_payment": True, "split_amount": 50},
    {"split_payment": True, "split_payment_method": "upi", "split_amount": 500},
    {"split_payment": True, "split_payment_method": "upi", "split_amount": 0},
])
async def test_invalid_split_payment(client, owner, menu_item, split):
    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 1}], **split},
        headers=auth_headers(owner)
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SPLIT_PAYMENT"


async def test_redeemed_points_are_deducted_at_checkout(client, db, owner, menu_item, customer):
    customer.loyalty_points = 100
    await db.commit()

    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 1}], "customer_id": customer.id, "points_redeemed": 50},
        headers=auth_headers(owner)
    )
    assert response.status_code == 201
    assert response.json()["points_redeemed"] == 50
    assert response.json()["total_amount"] == 115.0

    await db.refresh(customer)
    assert customer.loyalty_points == 50


async def test_redeeming_more_points_than_held(client, db, owner, menu_item, customer):
    customer.loyalty_points = 10
    await db.commit()

    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 1}], "customer_id": customer.id, "points_redeemed": 50},
        headers=auth_headers(owner)
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INSUFFICIENT_POINTS"

    response = await client.post(
        "/api/cafes/t1/orders",
        json={"items": [{"menu_item_id": menu_item.id, "quantity": 1}], "points_redeemed": 5},
        headers=auth_headers(owner)
    )
    assert response.json()["code"] == "CUSTOMER_REQUIRED"
