from datetime import timedelta

import pytest

import metrics_service
from analytics_api import resolve_range
from errors import ValidationFailed
from feature_service import set_override
from timezone_utils import get_business_today

from conftest import auth_headers


def test_resolve_range_defaults_to_thirty_days():
    start, end = resolve_range(None, None)
    assert end == get_business_today()
    assert (end - start).days == 29


@pytest.mark.parametrize("start_offset,end_offset", [(0, -1), (-400, 0)])
def test_resolve_range_rejects(start_offset, end_offset):
    today = get_business_today()
    with pytest.raises(ValidationFailed) as exc:
        resolve_range(today + timedelta(days=start_offset), today + timedelta(days=end_offset))
    assert exc.value.code == "INVALID_DATE_RANGE"


async def test_analytics_needs_the_feature(client, owner):
    response = await client.get("/api/cafes/t1/analytics/today", headers=auth_headers(owner))
    assert response.status_code == 403
    assert response.json()["code"] == "FEATURE_ACCESS_DENIED"


async def test_summary_and_daily(client, db, cafe, owner):
    await set_override(db, cafe.id, "analytics", True)
    await metrics_service.increment_order(cafe.id, 80.0)
    await metrics_service.increment_order(cafe.id, 20.0)
    headers = auth_headers(owner)

    response = await client.get("/api/cafes/t1/analytics/summary", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["today"]["total_orders"] == 2
    assert body["totals"]["total_revenue"] == 100.0
    assert body["this_month"]["total_orders"] == 2

    response = await client.get("/api/cafes/t1/analytics/daily", headers=headers)
    rows = response.json()
    assert len(rows) == 1
    assert rows[0]["date"] == get_business_today().isoformat()


async def test_bad_range_over_http(client, db, cafe, owner):
    await set_override(db, cafe.id, "analytics", True)
    today = get_business_today()
    response = await client.get(
        "/api/cafes/t1/analytics/daily",
        params={"start_date": today.isoformat(), "end_date": (today - timedelta(days=3)).isoformat()},
        headers=auth_headers(owner)
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_DATE_RANGE"
