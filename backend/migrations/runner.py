"""
Ordered migration registry.

Applied migrations are recorded by name in schema_migrations. The schema
version is the length of the longest applied prefix of MIGRATIONS, so a
database with a gap reports the version before the gap.

Usage:
    python -m migrations.runner                      # apply all pending
    python -m migrations.runner 002_seed_features    # apply named migrations
    python -m migrations.runner --status
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

# Add parent directory to path for imports when running standalone
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from models import SchemaMigration
from migrations import (
    initial_schema, seed_features, migrate_enabled_modules, backfill_tenant_defaults, add_checkout_columns
)

logger = logging.getLogger(__name__)

MIGRATIONS = [
    ("001_initial_schema", initial_schema.migrate),
    ("002_seed_features", seed_features.migrate),
    ("003_migrate_enabled_modules", migrate_enabled_modules.migrate),
    ("004_backfill_tenant_defaults", backfill_tenant_defaults.migrate),
    ("005_add_checkout_columns", add_checkout_columns.migrate),
]

REQUIRED_SCHEMA_VERSION = len(MIGRATIONS)


async def _ensure_registry(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(SchemaMigration.__table__.create, checkfirst=True)


async def get_applied(engine: AsyncEngine) -> List[str]:
    await _ensure_registry(engine)
    async with AsyncSession(engine) as session:
        result = await session.execute(select(SchemaMigration.name).order_by(SchemaMigration.id))
        return list(result.scalars().all())


async def get_schema_version(engine: AsyncEngine) -> int:
    applied = set(await get_applied(engine))
    version = 0
    for name, _ in MIGRATIONS:
        if name not in applied:
            break
        version += 1
    return version


async def run_migrations(engine: AsyncEngine, names: Optional[Iterable[str]] = None) -> List[str]:
    """
    Apply pending migrations in registry order and return the names applied.

    With `names`, only those migrations run (unknown names raise ValueError).
    A failing migration is not recorded and stops the run.
    """
    registry = dict(MIGRATIONS)
    if names is not None:
        names = list(names)
        unknown = [name for name in names if name not in registry]
        if unknown:
            raise ValueError(f"Unknown migrations: {', '.join(unknown)}")

    applied = set(await get_applied(engine))
    selected = [name for name, _ in MIGRATIONS if names is None or name in names]

    ran = []
    for name in selected:
        if name in applied:
            logger.debug(f"Migration {name} already applied")
            continue

        logger.info(f"🔄 Applying migration {name}...")
        try:
            await registry[name](engine)
        except Exception as e:
            logger.error(f"❌ Migration {name} failed: {e}")
            raise

        async with AsyncSession(engine) as session:
            session.add(SchemaMigration(name=name))
            await session.commit()
        ran.append(name)
        logger.info(f"✅ Migration {name} applied")

    if not ran:
        logger.info("✅ Schema is up to date - no migrations pending")
    return ran


async def _main(argv: List[str]):
    from database import engine

    try:
        if argv and argv[0] == "--status":
            applied = set(await get_applied(engine))
            for name, _ in MIGRATIONS:
                print(f"  [{'x' if name in applied else ' '}] {name}")
            print(f"\nSchema version: {await get_schema_version(engine)} (required {REQUIRED_SCHEMA_VERSION})")
            return
        await run_migrations(engine, argv or None)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(_main(sys.argv[1:]))
