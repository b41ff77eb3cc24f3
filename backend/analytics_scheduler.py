"""
Analytics Scheduler - nightly rebuild of cafe_daily_metrics

Live order/customer events keep the daily counters current, but those bumps
are best-effort. Once a night the previous business day is recomputed from
the orders and customers tables for every active cafe.

Run as a background task using APScheduler or directly:
    python analytics_scheduler.py [YYYY-MM-DD]
"""

import asyncio
import logging
import sys
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select

import database
import metrics_service
from config import settings
from models import Tenant
from timezone_utils import get_business_today

logger = logging.getLogger(__name__)


async def recompute_day_for_all_cafes(day: date) -> dict:
    """Recompute one day for every active cafe. A failing cafe does not stop the run."""
    async with database.async_session_maker() as db:
        result = await db.execute(select(Tenant.id, Tenant.slug).where(Tenant.is_active == True).order_by(Tenant.id))
        cafes = result.all()

    succeeded, failed = 0, 0
    for tenant_id, slug in cafes:
        try:
            async with database.async_session_maker() as db:
                await metrics_service.recompute(db, tenant_id, day)
            succeeded += 1
        except Exception as e:
            failed += 1
            logger.error(f"❌ Failed to recompute metrics for cafe '{slug}' on {day}: {e}")

    return {"date": day.isoformat(), "cafes": len(cafes), "succeeded": succeeded, "failed": failed}


async def run_nightly_analytics(day: Optional[date] = None) -> dict:
    day = day or (get_business_today() - timedelta(days=1))
    logger.info(f"🔍 Starting nightly analytics recompute for {day}...")
    summary = await recompute_day_for_all_cafes(day)
    logger.info(
        f"✅ Nightly analytics for {day} completed: "
        f"{summary['succeeded']}/{summary['cafes']} cafes ({summary['failed']} failed)"
    )
    return summary


# ============================================================================
# Scheduler Setup (APScheduler)
# ============================================================================

def start_analytics_scheduler():
    """
    Start the APScheduler background scheduler.
    Runs the recompute daily at ANALYTICS_JOB_HOUR in the business timezone.
    """
    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from apscheduler.triggers.cron import CronTrigger

    scheduler = AsyncIOScheduler(timezone=settings.APP_TIMEZONE)

    scheduler.add_job(
        run_nightly_analytics,
        CronTrigger(hour=settings.ANALYTICS_JOB_HOUR, minute=0, timezone=settings.APP_TIMEZONE),
        id='nightly_analytics',
        name='Nightly Cafe Metrics Recompute',
        replace_existing=True,
        coalesce=True,
        misfire_grace_time=3600
    )

    scheduler.start()
    logger.info(
        f"📅 Analytics scheduler started - daily at {settings.ANALYTICS_JOB_HOUR:02d}:00 {settings.APP_TIMEZONE}"
    )
    return scheduler


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    target = date.fromisoformat(sys.argv[1]) if len(sys.argv) > 1 else None
    asyncio.run(run_nightly_analytics(target))
