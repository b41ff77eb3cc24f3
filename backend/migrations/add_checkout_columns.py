"""
005: add the checkout extras (split payment, extra charge, redeemed points),
the tax label on settings, and the menu categories table.

Only missing columns are added, so the migration is safe on databases that
001 already created from the current models.
"""

import logging

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from database import Base
from models import Category

logger = logging.getLogger(__name__)

NEW_COLUMNS = [
    ("orders", "split_payment", "BOOLEAN NOT NULL DEFAULT FALSE"),
    ("orders", "split_payment_method", "VARCHAR(50)"),
    ("orders", "split_amount", "FLOAT NOT NULL DEFAULT 0"),
    ("orders", "extra_charge", "FLOAT NOT NULL DEFAULT 0"),
    ("orders", "extra_charge_note", "VARCHAR(255)"),
    ("orders", "points_redeemed", "INTEGER NOT NULL DEFAULT 0"),
    ("tenant_settings", "tax_name", "VARCHAR(50) NOT NULL DEFAULT 'Tax'"),
    ("tenant_settings_history", "tax_name", "VARCHAR(50) NOT NULL DEFAULT 'Tax'"),
]


def _existing_columns(sync_conn, table: str) -> set:
    return {col["name"] for col in inspect(sync_conn).get_columns(table)}


async def migrate(engine: AsyncEngine):
    added = 0
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=[Category.__table__])

        columns = {}
        for table, column, ddl in NEW_COLUMNS:
            if table not in columns:
                columns[table] = await conn.run_sync(_existing_columns, table)
            if column in columns[table]:
                continue
            await conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
            added += 1

    logger.info(f"✅ Checkout columns in place ({added} added)")
