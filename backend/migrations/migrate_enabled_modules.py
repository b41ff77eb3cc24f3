"""
003: move the legacy tenants.enabled_modules JSON map into tenant_feature_overrides.

Rows already present in tenant_feature_overrides win over the JSON value.
Keys that are not in the feature catalog are dropped. The column is removed
once every tenant has been copied.
"""

import json
import logging

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from feature_service import to_bool

logger = logging.getLogger(__name__)


def _has_column(sync_conn, table: str, column: str) -> bool:
    return any(col["name"] == column for col in inspect(sync_conn).get_columns(table))


def _parse_modules(raw) -> dict:
    if raw is None:
        return {}
    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    return raw if isinstance(raw, dict) else {}


async def migrate(engine: AsyncEngine):
    async with engine.begin() as conn:
        if not await conn.run_sync(_has_column, "tenants", "enabled_modules"):
            logger.info("ℹ️ tenants.enabled_modules not present, nothing to migrate")
            return

        catalog = set((await conn.execute(text("SELECT key FROM features"))).scalars().all())
        existing = {
            (row[0], row[1])
            for row in await conn.execute(text("SELECT tenant_id, feature_key FROM tenant_feature_overrides"))
        }
        tenants = (await conn.execute(
            text("SELECT id, enabled_modules FROM tenants WHERE enabled_modules IS NOT NULL")
        )).all()

        copied = skipped = 0
        for tenant_id, raw in tenants:
            for key, value in _parse_modules(raw).items():
                if key not in catalog:
                    logger.warning(f"Dropping unknown module '{key}' for cafe {tenant_id}")
                    skipped += 1
                    continue
                if (tenant_id, key) in existing:
                    skipped += 1
                    continue
                await conn.execute(
                    text(
                        "INSERT INTO tenant_feature_overrides (tenant_id, feature_key, enabled, created_at, updated_at) "
                        "VALUES (:tenant_id, :key, :enabled, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)"
                    ),
                    {"tenant_id": tenant_id, "key": key, "enabled": to_bool(value)}
                )
                existing.add((tenant_id, key))
                copied += 1

        await conn.execute(text("ALTER TABLE tenants DROP COLUMN enabled_modules"))
        logger.info(f"✅ Copied {copied} module flags into overrides ({skipped} skipped); dropped tenants.enabled_modules")
