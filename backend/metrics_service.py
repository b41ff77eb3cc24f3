"""
Daily metrics aggregation (cafe_daily_metrics).

Order and customer events bump the current business day's counters. The bumps
run in their own session after the triggering write has committed and never
raise: a failed bump is logged and repaired by the nightly recompute.
"""

import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import select, func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import database
from models import CafeDailyMetrics, Order, Customer, OrderStatus
from timezone_utils import get_business_today, utc_to_business_date, business_day_bounds, month_start

logger = logging.getLogger(__name__)

COUNTER_FIELDS = (
    "total_orders", "total_revenue", "completed_orders",
    "completed_revenue", "total_customers", "new_customers",
)


def _business_date(when: Optional[datetime]) -> date:
    return utc_to_business_date(when) if when else get_business_today()


async def _get_or_create_row(db: AsyncSession, tenant_id: int, day: date) -> CafeDailyMetrics:
    result = await db.execute(
        select(CafeDailyMetrics).where(
            CafeDailyMetrics.tenant_id == tenant_id,
            CafeDailyMetrics.date == day
        )
    )
    row = result.scalar_one_or_none()
    if row:
        return row

    row = CafeDailyMetrics(tenant_id=tenant_id, date=day, **{f: 0 for f in COUNTER_FIELDS})
    db.add(row)
    try:
        await db.flush()
    except IntegrityError:
        # Created concurrently; use the existing row
        await db.rollback()
        result = await db.execute(
            select(CafeDailyMetrics).where(
                CafeDailyMetrics.tenant_id == tenant_id,
                CafeDailyMetrics.date == day
            )
        )
        row = result.scalar_one()
    return row


async def _apply(tenant_id: int, when: Optional[datetime], event: str, **deltas) -> bool:
    """Add deltas to the day's counters, flooring at zero. Never raises."""
    day = _business_date(when)
    try:
        async with database.async_session_maker() as db:
            row = await _get_or_create_row(db, tenant_id, day)
            for field_name, delta in deltas.items():
                value = (getattr(row, field_name) or 0) + delta
                setattr(row, field_name, max(value, 0))
            await db.commit()
        return True
    except Exception as e:
        logger.error(f"Failed to record {event} metrics for cafe {tenant_id} on {day}: {e}")
        return False


async def increment_order(tenant_id: int, amount: float, when: Optional[datetime] = None) -> bool:
    return await _apply(tenant_id, when, "order", total_orders=1, total_revenue=float(amount or 0))


async def decrement_order(
    tenant_id: int,
    amount: float,
    when: Optional[datetime] = None,
    was_completed: bool = False
) -> bool:
    deltas = {"total_orders": -1, "total_revenue": -float(amount or 0)}
    if was_completed:
        deltas.update(completed_orders=-1, completed_revenue=-float(amount or 0))
    return await _apply(tenant_id, when, "order removal", **deltas)


async def update_order_completion(tenant_id: int, amount: float, when: Optional[datetime] = None) -> bool:
    return await _apply(tenant_id, when, "order completion", completed_orders=1, completed_revenue=float(amount or 0))


async def increment_customer(tenant_id: int, is_new: bool = True, when: Optional[datetime] = None) -> bool:
    deltas = {"total_customers": 1}
    if is_new:
        deltas["new_customers"] = 1
    return await _apply(tenant_id, when, "customer", **deltas)


# =============================================================================
# READS
# =============================================================================

async def get_date_range(db: AsyncSession, tenant_id: int, start: date, end: date) -> List[CafeDailyMetrics]:
    result = await db.execute(
        select(CafeDailyMetrics)
        .where(
            CafeDailyMetrics.tenant_id == tenant_id,
            CafeDailyMetrics.date >= start,
            CafeDailyMetrics.date <= end
        )
        .order_by(CafeDailyMetrics.date)
    )
    return list(result.scalars().all())


async def get_totals(db: AsyncSession, tenant_id: int, start: date, end: date) -> dict:
    result = await db.execute(
        select(
            func.coalesce(func.sum(CafeDailyMetrics.total_orders), 0),
            func.coalesce(func.sum(CafeDailyMetrics.total_revenue), 0.0),
            func.coalesce(func.sum(CafeDailyMetrics.completed_orders), 0),
            func.coalesce(func.sum(CafeDailyMetrics.completed_revenue), 0.0),
            func.coalesce(func.sum(CafeDailyMetrics.new_customers), 0),
        ).where(
            CafeDailyMetrics.tenant_id == tenant_id,
            CafeDailyMetrics.date >= start,
            CafeDailyMetrics.date <= end
        )
    )
    total_orders, total_revenue, completed_orders, completed_revenue, new_customers = result.one()
    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "total_orders": int(total_orders),
        "total_revenue": round(float(total_revenue), 2),
        "completed_orders": int(completed_orders),
        "completed_revenue": round(float(completed_revenue), 2),
        "new_customers": int(new_customers),
        "average_order_value": round(float(total_revenue) / total_orders, 2) if total_orders else 0.0,
    }


async def get_today(db: AsyncSession, tenant_id: int) -> dict:
    today = get_business_today()
    return await get_totals(db, tenant_id, today, today)


async def get_this_month(db: AsyncSession, tenant_id: int) -> dict:
    today = get_business_today()
    return await get_totals(db, tenant_id, month_start(today), today)


# =============================================================================
# RECOMPUTE
# =============================================================================

async def recompute(db: AsyncSession, tenant_id: int, day: date) -> CafeDailyMetrics:
    """Rebuild one day's row from orders and customers (upsert on tenant_id, date)"""
    start, end = business_day_bounds(day)
    completed = Order.status == OrderStatus.COMPLETED.value

    result = await db.execute(
        select(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_amount), 0.0),
            func.coalesce(func.sum(case((completed, 1), else_=0)), 0),
            func.coalesce(func.sum(case((completed, Order.total_amount), else_=0.0)), 0.0),
        ).where(
            Order.tenant_id == tenant_id,
            Order.created_at >= start,
            Order.created_at < end
        )
    )
    total_orders, total_revenue, completed_orders, completed_revenue = result.one()

    result = await db.execute(
        select(
            func.count(Customer.id),
            func.coalesce(func.sum(case((Customer.created_at >= start, 1), else_=0)), 0),
        ).where(
            Customer.tenant_id == tenant_id,
            Customer.created_at < end
        )
    )
    total_customers, new_customers = result.one()

    row = await _get_or_create_row(db, tenant_id, day)
    row.total_orders = int(total_orders)
    row.total_revenue = float(total_revenue)
    row.completed_orders = int(completed_orders)
    row.completed_revenue = float(completed_revenue)
    row.total_customers = int(total_customers)
    row.new_customers = int(new_customers)
    await db.commit()
    await db.refresh(row)
    return row


async def get_order_dates(db: AsyncSession, tenant_id: int) -> List[date]:
    """Distinct business days on which a cafe has orders"""
    result = await db.execute(select(Order.created_at).where(Order.tenant_id == tenant_id))
    return sorted({utc_to_business_date(created_at) for created_at in result.scalars().all() if created_at})
