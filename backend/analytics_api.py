"""
Analytics routes (feature: analytics, permission: view_reports).

Dashboard numbers come from the pre-aggregated cafe_daily_metrics table;
top items (feature: advanced_reports) aggregate order lines directly.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

import metrics_service
from database import get_db
from errors import ValidationFailed
from models import Order, OrderItem, OrderStatus, Tenant
from permissions import Permission
from schemas import DailyMetricsResponse, TopItem
from subscription_middleware import require_membership, require_feature, require_permission
from timezone_utils import get_business_today, business_day_bounds

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cafes/{slug}/analytics",
    tags=["Analytics"],
    dependencies=[
        Depends(require_feature("analytics")),
        Depends(require_permission(Permission.VIEW_REPORTS)),
    ]
)

DEFAULT_RANGE_DAYS = 30
MAX_RANGE_DAYS = 366


def resolve_range(start: Optional[date], end: Optional[date]) -> tuple[date, date]:
    end = end or get_business_today()
    start = start or (end - timedelta(days=DEFAULT_RANGE_DAYS - 1))
    if start > end:
        raise ValidationFailed("start_date must not be after end_date", code="INVALID_DATE_RANGE")
    if (end - start).days >= MAX_RANGE_DAYS:
        raise ValidationFailed(f"Date range cannot exceed {MAX_RANGE_DAYS} days", code="INVALID_DATE_RANGE")
    return start, end


@router.get("/summary")
async def analytics_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    start, end = resolve_range(start_date, end_date)
    return {
        "totals": await metrics_service.get_totals(db, tenant.id, start, end),
        "today": await metrics_service.get_today(db, tenant.id),
        "this_month": await metrics_service.get_this_month(db, tenant.id),
    }


@router.get("/today")
async def analytics_today(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await metrics_service.get_today(db, tenant.id)


@router.get("/month")
async def analytics_month(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await metrics_service.get_this_month(db, tenant.id)


@router.get("/daily", response_model=List[DailyMetricsResponse])
async def analytics_daily(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    start, end = resolve_range(start_date, end_date)
    return await metrics_service.get_date_range(db, tenant.id, start, end)


@router.get(
    "/top-items",
    response_model=List[TopItem],
    dependencies=[Depends(require_feature("advanced_reports"))]
)
async def analytics_top_items(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(10, ge=1, le=50),
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    start, end = resolve_range(start_date, end_date)
    range_start, _ = business_day_bounds(start)
    _, range_end = business_day_bounds(end)

    quantity = func.sum(OrderItem.quantity).label("quantity")
    result = await db.execute(
        select(OrderItem.item_name, quantity, func.sum(OrderItem.total).label("revenue"))
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            Order.tenant_id == tenant.id,
            Order.status != OrderStatus.CANCELLED.value,
            Order.created_at >= range_start,
            Order.created_at < range_end
        )
        .group_by(OrderItem.item_name)
        .order_by(desc(quantity))
        .limit(limit)
    )
    return [
        TopItem(item_name=name, quantity=int(qty or 0), revenue=round(float(revenue or 0), 2))
        for name, qty, revenue in result.all()
    ]
