import csv
import io

import pytest

from errors import ValidationFailed
from menu_api import parse_menu_csv
from models import MenuItem

from conftest import auth_headers, make_user


@pytest.fixture
async def menu(db, cafe):
    db.add_all([
        MenuItem(tenant_id=cafe.id, name="Latte", category="Coffee", price=120.0),
        MenuItem(tenant_id=cafe.id, name="Mocha", category="coffee", price=150.0),
        MenuItem(tenant_id=cafe.id, name="Brownie", category="Desserts", price=90.0),
        MenuItem(tenant_id=cafe.id, name="Old Special", category="Seasonal", price=99.0, is_available=False),
    ])
    await db.commit()


def test_parse_menu_csv():
    text = (
        "Name,Category,Price,Is_Available,Sort_Order\n"
        "Latte,Coffee,120,true,1\n"
        "Tea,,,,\n"
        "Mocha,Coffee,free,,\n"
        "Scone,Bakery,80,maybe,\n"
        "Brownie,Desserts,90,no,\n"
    )
    rows, errors = parse_menu_csv(text)
    assert [row["name"] for row in rows] == ["Latte", "Brownie"]
    assert rows[0]["sort_order"] == 1
    assert rows[1]["is_available"] is False
    assert rows[1]["featured_priority"] is None
    assert len(errors) == 3
    assert errors[0].startswith("Line 3")


def test_parse_menu_csv_needs_price_column():
    with pytest.raises(ValidationFailed) as exc:
        parse_menu_csv("name,category\nLatte,Coffee\n")
    assert exc.value.code == "INVALID_CSV"


async def test_export_then_import(client, owner, menu):
    headers = auth_headers(owner)
    response = await client.get("/api/cafes/t1/menu-items/export", headers=headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    exported = list(csv.DictReader(io.StringIO(response.text)))
    assert {row["name"] for row in exported} == {"Latte", "Mocha", "Brownie", "Old Special"}

    body = b"name,category,price\nlatte,Coffee,130\nCortado,Espresso Bar,110\n"
    response = await client.post(
        "/api/cafes/t1/menu-items/import", files={"file": ("menu.csv", body, "text/csv")}, headers=headers
    )
    assert response.json() == {"created": 1, "updated": 1, "errors": []}

    response = await client.get("/api/cafes/t1/menu-items", params={"category": "Espresso Bar"}, headers=headers)
    assert [item["name"] for item in response.json()] == ["Cortado"]

    response = await client.get("/api/cafes/t1/categories", headers=headers)
    assert {c["name"] for c in response.json()} == {"Coffee", "Espresso Bar"}


async def test_menu_template_is_public_to_members(client, db, cafe):
    chef = await make_user(db, "chef1", "chef", cafe)
    response = await client.get("/api/cafes/t1/menu-items/template", headers=auth_headers(chef))
    assert response.status_code == 200
    assert response.text.splitlines()[0] == "name,description,category,price,is_available,featured_priority,sort_order"

    response = await client.get("/api/cafes/t1/menu-items/export", headers=auth_headers(chef))
    assert response.status_code == 403


async def test_category_crud(client, owner, other_cafe, db):
    headers = auth_headers(owner)
    response = await client.post("/api/cafes/t1/categories", json={"name": "Coffee", "sort_order": 1}, headers=headers)
    assert response.status_code == 201
    category_id = response.json()["id"]

    response = await client.post("/api/cafes/t1/categories", json={"name": " coffee "}, headers=headers)
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_CATEGORY"

    response = await client.delete(f"/api/cafes/t1/categories/{category_id}", headers=headers)
    assert response.status_code == 204
    response = await client.get("/api/cafes/t1/categories", headers=headers)
    assert response.json() == []
    response = await client.get("/api/cafes/t1/categories", params={"include_inactive": True}, headers=headers)
    assert response.json()[0]["is_active"] is False

    other_owner = await make_user(db, "other-owner", "user", other_cafe)
    response = await client.get(f"/api/cafes/t2/categories/{category_id}", headers=auth_headers(other_owner))
    assert response.status_code == 404
    assert response.json()["code"] == "CATEGORY_NOT_FOUND"


async def test_renaming_a_category_moves_its_items(client, owner, menu):
    headers = auth_headers(owner)
    response = await client.post("/api/cafes/t1/categories", json={"name": "Desserts"}, headers=headers)
    category_id = response.json()["id"]

    response = await client.put(f"/api/cafes/t1/categories/{category_id}", json={"name": "Sweets"}, headers=headers)
    assert response.json()["name"] == "Sweets"

    response = await client.get("/api/cafes/t1/menu-items", params={"category": "Sweets"}, headers=headers)
    assert [item["name"] for item in response.json()] == ["Brownie"]


async def test_generate_categories_from_menu(client, owner, menu):
    headers = auth_headers(owner)
    await client.post("/api/cafes/t1/categories", json={"name": "Seasonal"}, headers=headers)

    response = await client.post("/api/cafes/t1/categories/generate", headers=headers)
    assert response.status_code == 200
    assert {c["name"]: c["item_count"] for c in response.json()} == {"Coffee": 2, "Desserts": 1}

    response = await client.get("/api/cafes/t1/categories/with-counts", headers=headers)
    assert {c["name"]: c["item_count"] for c in response.json()} == {"Coffee": 2, "Desserts": 1}

    response = await client.get("/api/cafes/t1/categories", params={"include_inactive": True}, headers=headers)
    assert {c["name"]: c["is_active"] for c in response.json()} == {"Coffee": True, "Desserts": True, "Seasonal": False}
