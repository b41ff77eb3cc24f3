"""
001: create every table defined in models.py.

Safe to run on an existing database; create_all only adds missing tables.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from database import Base
import models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)


async def migrate(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"✅ Ensured {len(Base.metadata.tables)} tables exist")
