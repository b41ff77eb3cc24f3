"""
002: seed the feature catalog.

Existing rows are left untouched so that catalog edits made in the database
survive re-runs.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from models import Feature

logger = logging.getLogger(__name__)

FEATURES = [
    # key, name, description, default_free, default_pro
    ("orders", "Orders", "Take and manage orders", True, True),
    ("analytics", "Analytics", "Sales dashboards and daily metrics", False, True),
    ("users", "User Management", "Create and manage staff accounts", False, True),
    ("menu_management", "Menu Management", "Edit menu items, prices and images", True, True),
    ("advanced_reports", "Advanced Reports", "Top items and detailed reporting", False, True),
    ("inventory", "Inventory", "Stock tracking and CSV import", False, True),
    ("customers", "Customers", "Customer records and loyalty points", True, True),
    ("invoices", "Invoices", "Generate invoices for orders", True, True),
    ("payment_methods", "Payment Methods", "Configure accepted payment methods", True, True),
    ("settings", "Settings", "Cafe settings and role permissions", True, True),
]


async def seed(session: AsyncSession) -> int:
    result = await session.execute(select(Feature.key))
    existing = set(result.scalars().all())

    added = 0
    for key, name, description, default_free, default_pro in FEATURES:
        if key in existing:
            continue
        session.add(Feature(
            key=key,
            name=name,
            description=description,
            default_free=default_free,
            default_pro=default_pro
        ))
        added += 1

    await session.commit()
    return added


async def migrate(engine: AsyncEngine):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        added = await seed(session)
    logger.info(f"✅ Seeded {added} features ({len(FEATURES) - added} already present)")
