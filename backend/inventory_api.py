"""
Inventory routes (feature: inventory).

Reads are open to cafe members; writes, CSV import and stock adjustments need
manage_inventory.
"""

import csv
import io
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from errors import NotFound, ValidationFailed
from models import InventoryItem, Tenant
from permissions import Permission
from rate_limiter import limiter, UPLOAD_LIMIT, UPLOAD_SCOPE
from schemas import (
    InventoryItemCreate, InventoryItemUpdate, InventoryItemResponse,
    CsvImportResult, StockAdjustment
)
from subscription_middleware import require_membership, require_feature, require_permission

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cafes/{slug}/inventory",
    tags=["Inventory"],
    dependencies=[Depends(require_feature("inventory"))]
)

can_manage_inventory = Depends(require_permission(Permission.MANAGE_INVENTORY))

CSV_COLUMNS = ["name", "category", "quantity", "unit", "cost_per_unit", "reorder_level", "supplier", "notes"]
NUMERIC_COLUMNS = {"quantity", "cost_per_unit", "reorder_level"}
MAX_IMPORT_SIZE = 2 * 1024 * 1024  # 2MB


class InventoryItemNotFound(NotFound):
    code = "INVENTORY_ITEM_NOT_FOUND"
    message = "Inventory item not found"


async def get_inventory_item(db: AsyncSession, tenant_id: int, item_id: int) -> InventoryItem:
    result = await db.execute(
        select(InventoryItem).where(InventoryItem.id == item_id, InventoryItem.tenant_id == tenant_id)
    )
    item = result.scalar_one_or_none()
    if not item:
        raise InventoryItemNotFound()
    return item


def _csv_response(rows: List[list], filename: str) -> StreamingResponse:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    writer.writerows(rows)
    buffer.seek(0)
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


def parse_inventory_csv(text: str):
    """
    Parse an inventory CSV into (rows, errors).

    Rows without a name or with non-numeric quantities are reported and skipped.
    """
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames or "name" not in [f.strip().lower() for f in reader.fieldnames]:
        raise ValidationFailed("CSV must have a header row with at least a 'name' column", code="INVALID_CSV")

    rows, errors = [], []
    for line_number, raw in enumerate(reader, start=2):
        record = {(k or "").strip().lower(): (v or "").strip() for k, v in raw.items()}
        if not record.get("name"):
            errors.append(f"Line {line_number}: name is required")
            continue

        row = {}
        try:
            for column in CSV_COLUMNS:
                value = record.get(column, "")
                if column in NUMERIC_COLUMNS:
                    row[column] = float(value) if value else 0.0
                    if row[column] < 0:
                        raise ValueError(f"{column} cannot be negative")
                else:
                    row[column] = value or None
        except ValueError as e:
            errors.append(f"Line {line_number}: {e}")
            continue
        rows.append(row)
    return rows, errors


@router.get("", response_model=List[InventoryItemResponse])
async def list_inventory(
    category: Optional[str] = None,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    query = select(InventoryItem).where(InventoryItem.tenant_id == tenant.id)
    if category:
        query = query.where(InventoryItem.category == category)
    result = await db.execute(query.order_by(InventoryItem.name))
    return result.scalars().all()


@router.get("/categories", response_model=List[str])
async def list_inventory_categories(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(InventoryItem.category)
        .where(InventoryItem.tenant_id == tenant.id, InventoryItem.category.isnot(None))
        .distinct()
        .order_by(InventoryItem.category)
    )
    return result.scalars().all()


@router.get("/low-stock", response_model=List[InventoryItemResponse])
async def list_low_stock(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    """Items at or below their reorder level that are not yet out of stock"""
    result = await db.execute(
        select(InventoryItem)
        .where(
            InventoryItem.tenant_id == tenant.id,
            InventoryItem.quantity > 0,
            InventoryItem.quantity <= InventoryItem.reorder_level
        )
        .order_by(InventoryItem.quantity)
    )
    return result.scalars().all()


@router.get("/out-of-stock", response_model=List[InventoryItemResponse])
async def list_out_of_stock(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(InventoryItem)
        .where(InventoryItem.tenant_id == tenant.id, InventoryItem.quantity <= 0)
        .order_by(InventoryItem.name)
    )
    return result.scalars().all()


@router.get("/statistics")
async def inventory_statistics(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(
            func.count(InventoryItem.id),
            func.coalesce(func.sum(InventoryItem.quantity * InventoryItem.cost_per_unit), 0.0),
            func.coalesce(func.sum(case((InventoryItem.quantity <= 0, 1), else_=0)), 0),
        ).where(InventoryItem.tenant_id == tenant.id)
    )
    total_items, total_value, out_of_stock = result.one()

    low = await db.execute(
        select(func.count(InventoryItem.id)).where(
            InventoryItem.tenant_id == tenant.id,
            InventoryItem.quantity > 0,
            InventoryItem.quantity <= InventoryItem.reorder_level
        )
    )
    return {
        "total_items": int(total_items),
        "total_value": round(float(total_value), 2),
        "low_stock_items": int(low.scalar_one()),
        "out_of_stock_items": int(out_of_stock),
    }


@router.get("/export")
async def export_inventory(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(InventoryItem).where(InventoryItem.tenant_id == tenant.id).order_by(InventoryItem.name)
    )
    rows = [[getattr(item, column) if getattr(item, column) is not None else "" for column in CSV_COLUMNS]
            for item in result.scalars().all()]
    return _csv_response(rows, f"inventory_{tenant.slug}.csv")


@router.get("/template")
async def inventory_template(tenant: Tenant = Depends(require_membership)):
    return _csv_response([["Milk", "Dairy", 10, "litre", 55, 5, "Local Dairy", ""]], "inventory_template.csv")


@router.post("/import", response_model=CsvImportResult, dependencies=[can_manage_inventory])
@limiter.shared_limit(UPLOAD_LIMIT, scope=UPLOAD_SCOPE)
async def import_inventory(
    request: Request,
    file: UploadFile = File(..., description="Inventory CSV"),
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    """Create or update items by name from a CSV upload"""
    content = await file.read()
    if len(content) > MAX_IMPORT_SIZE:
        raise ValidationFailed("File too large. Maximum size: 2MB", code="FILE_TOO_LARGE")
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationFailed("CSV must be UTF-8 encoded", code="INVALID_CSV")

    rows, errors = parse_inventory_csv(text)

    result = await db.execute(select(InventoryItem).where(InventoryItem.tenant_id == tenant.id))
    existing = {item.name.lower(): item for item in result.scalars().all()}

    created = updated = 0
    for row in rows:
        item = existing.get(row["name"].lower())
        if item:
            for field, value in row.items():
                setattr(item, field, value)
            updated += 1
        else:
            item = InventoryItem(tenant_id=tenant.id, **row)
            db.add(item)
            existing[row["name"].lower()] = item
            created += 1
    await db.commit()

    logger.info(f"Inventory import for cafe {tenant.slug}: {created} created, {updated} updated, {len(errors)} errors")
    return CsvImportResult(created=created, updated=updated, errors=errors)


@router.post("", response_model=InventoryItemResponse, status_code=status.HTTP_201_CREATED, dependencies=[can_manage_inventory])
async def create_inventory_item(
    item_data: InventoryItemCreate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    item = InventoryItem(tenant_id=tenant.id, **item_data.model_dump())
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


@router.get("/{item_id}", response_model=InventoryItemResponse)
async def read_inventory_item(
    item_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await get_inventory_item(db, tenant.id, item_id)


@router.put("/{item_id}", response_model=InventoryItemResponse, dependencies=[can_manage_inventory])
async def update_inventory_item(
    item_id: int,
    item_data: InventoryItemUpdate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    item = await get_inventory_item(db, tenant.id, item_id)
    for field, value in item_data.model_dump(exclude_unset=True).items():
        setattr(item, field, value)
    await db.commit()
    await db.refresh(item)
    return item


@router.patch("/{item_id}/stock", response_model=InventoryItemResponse, dependencies=[can_manage_inventory])
async def adjust_stock(
    item_id: int,
    adjustment: StockAdjustment,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    item = await get_inventory_item(db, tenant.id, item_id)
    new_quantity = (item.quantity or 0) + adjustment.delta
    if new_quantity < 0:
        raise ValidationFailed(
            f"Insufficient stock. Available: {item.quantity}",
            code="INSUFFICIENT_STOCK",
            available=item.quantity
        )
    item.quantity = new_quantity
    await db.commit()
    await db.refresh(item)
    return item


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_manage_inventory])
async def delete_inventory_item(
    item_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    item = await get_inventory_item(db, tenant.id, item_id)
    await db.delete(item)
    await db.commit()
