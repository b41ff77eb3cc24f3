"""
Backfill cafe_daily_metrics from order history.

Recomputes every business date that has at least one order, for every cafe
(or a single cafe). Safe to re-run: each recompute overwrites its row.

Usage:
    python backfill_analytics.py [cafe-slug]
"""

import asyncio
import logging
import sys
from typing import Optional

from sqlalchemy import select

import database
import metrics_service
from models import Tenant

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def backfill_tenant(tenant_id: int, slug: str) -> dict:
    async with database.async_session_maker() as db:
        dates = await metrics_service.get_order_dates(db, tenant_id)

    stats = {"dates": len(dates), "succeeded": 0, "failed": 0}
    for day in dates:
        try:
            async with database.async_session_maker() as db:
                await metrics_service.recompute(db, tenant_id, day)
            stats["succeeded"] += 1
        except Exception as e:
            stats["failed"] += 1
            logger.error(f"❌ Cafe '{slug}': failed to recompute {day}: {e}")

    logger.info(f"Cafe '{slug}': {stats['succeeded']}/{stats['dates']} dates recomputed")
    return stats


async def backfill_analytics(slug: Optional[str] = None) -> dict:
    async with database.async_session_maker() as db:
        query = select(Tenant.id, Tenant.slug).order_by(Tenant.id)
        if slug:
            query = query.where(Tenant.slug == slug)
        result = await db.execute(query)
        cafes = result.all()

    if not cafes:
        logger.warning("No cafes to backfill")

    totals = {"cafes": len(cafes), "dates": 0, "failed": 0}
    for tenant_id, cafe_slug in cafes:
        stats = await backfill_tenant(tenant_id, cafe_slug)
        totals["dates"] += stats["dates"]
        totals["failed"] += stats["failed"]

    print("\n" + "=" * 60)
    print(f"✅ Backfill complete: {totals['cafes']} cafes, {totals['dates']} dates, {totals['failed']} failures")
    print("=" * 60)
    return totals


if __name__ == "__main__":
    asyncio.run(backfill_analytics(sys.argv[1] if len(sys.argv) > 1 else None))
