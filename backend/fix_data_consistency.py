"""
Data consistency repair.

- Cafes missing their settings row or payment methods get the defaults.
- Customers pointing at a cafe that no longer exists are reported, and
  deactivated with --fix.

Usage:
    python fix_data_consistency.py [--fix]
"""

import asyncio
import logging
import sys

from sqlalchemy import select, update

import database
from models import Customer, Tenant
from tenant_store import ensure_tenant_defaults

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def repair_tenant_defaults() -> int:
    repaired = 0
    async with database.async_session_maker() as db:
        result = await db.execute(select(Tenant).order_by(Tenant.id))
        for tenant in result.scalars().all():
            if await ensure_tenant_defaults(db, tenant):
                repaired += 1
                logger.info(f"Cafe '{tenant.slug}': missing defaults created")
        await db.commit()
    return repaired


async def find_orphan_customers(db) -> list:
    result = await db.execute(
        select(Customer.id, Customer.tenant_id)
        .outerjoin(Tenant, Tenant.id == Customer.tenant_id)
        .where(Tenant.id.is_(None))
    )
    return result.all()


async def repair_orphan_customers(fix: bool) -> int:
    async with database.async_session_maker() as db:
        orphans = await find_orphan_customers(db)
        for customer_id, tenant_id in orphans:
            logger.warning(f"Customer {customer_id} references missing cafe {tenant_id}")

        if fix and orphans:
            await db.execute(
                update(Customer)
                .where(Customer.id.in_([customer_id for customer_id, _ in orphans]))
                .values(is_active=False)
            )
            await db.commit()
    return len(orphans)


async def fix_data_consistency(fix: bool = False) -> dict:
    summary = {
        "cafes_repaired": await repair_tenant_defaults(),
        "orphan_customers": await repair_orphan_customers(fix),
    }
    print("\n" + "=" * 60)
    print(f"✅ Cafes given missing defaults: {summary['cafes_repaired']}")
    action = "deactivated" if fix else "found (run with --fix to deactivate)"
    print(f"{'✅' if fix else '⚠️ '} Orphan customers {action}: {summary['orphan_customers']}")
    print("=" * 60)
    return summary


if __name__ == "__main__":
    asyncio.run(fix_data_consistency(fix="--fix" in sys.argv))
