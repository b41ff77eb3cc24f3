"""
004: give every cafe a settings row and the default payment methods.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from models import Tenant
from tenant_store import ensure_tenant_defaults

logger = logging.getLogger(__name__)


async def backfill(session: AsyncSession) -> int:
    result = await session.execute(select(Tenant).order_by(Tenant.id))
    fixed = 0
    for tenant in result.scalars().all():
        if await ensure_tenant_defaults(session, tenant):
            fixed += 1
    await session.commit()
    return fixed


async def migrate(engine: AsyncEngine):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        fixed = await backfill(session)
    logger.info(f"✅ Backfilled defaults for {fixed} cafes")
