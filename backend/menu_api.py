"""
Menu management routes (feature: menu_management).

Everyone in the cafe may read the menu and its categories; writes, CSV import
and category generation need manage_menu. Menu items carry their category by
name, so renaming a category renames it on the items too.
"""

import csv
import io
import logging
from collections import OrderedDict
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from errors import NotFound, Conflict, ValidationFailed
from image_utils import save_menu_image, delete_image
from models import Category, MenuItem, Tenant
from permissions import Permission
from rate_limiter import limiter, UPLOAD_LIMIT, UPLOAD_SCOPE
from schemas import (
    MenuItemCreate, MenuItemUpdate, MenuItemResponse, CsvImportResult,
    CategoryCreate, CategoryUpdate, CategoryResponse, CategoryWithCount
)
from subscription_middleware import require_membership, require_feature, require_permission

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cafes/{slug}/menu-items",
    tags=["Menu"],
    dependencies=[Depends(require_feature("menu_management"))]
)

categories_router = APIRouter(
    prefix="/api/cafes/{slug}/categories",
    tags=["Categories"],
    dependencies=[Depends(require_feature("menu_management"))]
)

can_manage_menu = Depends(require_permission(Permission.MANAGE_MENU))

CSV_COLUMNS = ["name", "description", "category", "price", "is_available", "featured_priority", "sort_order"]
MAX_IMPORT_SIZE = 2 * 1024 * 1024  # 2MB
TRUE_VALUES = {"1", "true", "yes", "y"}
FALSE_VALUES = {"0", "false", "no", "n"}


class MenuItemNotFound(NotFound):
    code = "MENU_ITEM_NOT_FOUND"
    message = "Menu item not found"


class CategoryNotFound(NotFound):
    code = "CATEGORY_NOT_FOUND"
    message = "Category not found"


class DuplicateCategory(Conflict):
    code = "DUPLICATE_CATEGORY"
    message = "A category with this name already exists"


async def get_menu_item(db: AsyncSession, tenant_id: int, item_id: int) -> MenuItem:
    result = await db.execute(
        select(MenuItem).where(MenuItem.id == item_id, MenuItem.tenant_id == tenant_id)
    )
    item = result.scalar_one_or_none()
    if not item:
        raise MenuItemNotFound()
    return item


def _menu_order():
    # Featured items first (lower priority number wins), then manual order, then name
    return (
        MenuItem.featured_priority.is_(None),
        MenuItem.featured_priority,
        MenuItem.sort_order,
        MenuItem.name,
    )


async def get_category(db: AsyncSession, tenant_id: int, category_id: int) -> Category:
    result = await db.execute(
        select(Category).where(Category.id == category_id, Category.tenant_id == tenant_id)
    )
    category = result.scalar_one_or_none()
    if not category:
        raise CategoryNotFound()
    return category


async def find_category(db: AsyncSession, tenant_id: int, name: str) -> Optional[Category]:
    """Case-insensitive lookup by name"""
    result = await db.execute(
        select(Category).where(Category.tenant_id == tenant_id, func.lower(Category.name) == name.strip().lower())
    )
    return result.scalar_one_or_none()


async def ensure_categories(db: AsyncSession, tenant_id: int, names) -> int:
    """Create (or reactivate) a category row for every name given; returns how many were created"""
    created = 0
    for name in sorted({n.strip() for n in names if n and n.strip()}):
        category = await find_category(db, tenant_id, name)
        if category is None:
            db.add(Category(tenant_id=tenant_id, name=name))
            await db.flush()
            created += 1
        elif not category.is_active:
            category.is_active = True
    return created


def _to_bool(value: str, column: str) -> bool:
    lowered = value.lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"{column} must be true or false")


def parse_menu_csv(text: str):
    """
    Parse a menu CSV into (rows, errors).

    Only name and price are required. Missing optional columns fall back to the
    menu item defaults; bad rows are reported by line and skipped.
    """
    reader = csv.DictReader(io.StringIO(text))
    headers = [f.strip().lower() for f in reader.fieldnames or []]
    if "name" not in headers or "price" not in headers:
        raise ValidationFailed("CSV must have a header row with 'name' and 'price' columns", code="INVALID_CSV")

    rows, errors = [], []
    for line_number, raw in enumerate(reader, start=2):
        record = {(k or "").strip().lower(): (v or "").strip() for k, v in raw.items()}
        if not record.get("name") or not record.get("price"):
            errors.append(f"Line {line_number}: name and price are required")
            continue

        try:
            price = float(record["price"])
            if price < 0:
                raise ValueError("price cannot be negative")
            row = {
                "name": record["name"],
                "description": record.get("description") or None,
                "category": record.get("category") or None,
                "price": price,
                "is_available": _to_bool(record["is_available"], "is_available") if record.get("is_available") else True,
                "featured_priority": int(record["featured_priority"]) if record.get("featured_priority") else None,
                "sort_order": int(record["sort_order"]) if record.get("sort_order") else 0,
            }
        except ValueError as e:
            errors.append(f"Line {line_number}: {e}")
            continue
        rows.append(row)
    return rows, errors


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


@router.get("", response_model=List[MenuItemResponse])
async def list_menu_items(
    category: Optional[str] = None,
    available_only: bool = False,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    query = select(MenuItem).where(MenuItem.tenant_id == tenant.id)
    if category:
        query = query.where(MenuItem.category == category)
    if available_only:
        query = query.where(MenuItem.is_available == True)
    result = await db.execute(query.order_by(*_menu_order()))
    return result.scalars().all()


@router.get("/grouped")
async def list_menu_grouped(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    """Available items grouped by category"""
    result = await db.execute(
        select(MenuItem)
        .where(MenuItem.tenant_id == tenant.id, MenuItem.is_available == True)
        .order_by(MenuItem.category, *_menu_order())
    )
    grouped = OrderedDict()
    for item in result.scalars().all():
        grouped.setdefault(item.category or "Uncategorized", []).append(MenuItemResponse.model_validate(item))
    return grouped


@router.get("/export", dependencies=[can_manage_menu])
async def export_menu(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(MenuItem).where(MenuItem.tenant_id == tenant.id).order_by(MenuItem.category, *_menu_order())
    )
    rows = [
        [
            item.name, item.description or "", item.category or "", item.price,
            "true" if item.is_available else "false",
            "" if item.featured_priority is None else item.featured_priority, item.sort_order
        ]
        for item in result.scalars().all()
    ]
    return _csv_response(rows, f"{tenant.slug}-menu.csv")


@router.get("/template")
async def menu_template(tenant: Tenant = Depends(require_membership)):
    return _csv_response([["Cappuccino", "Double shot with steamed milk", "Coffee", 150, "true", "", 1]], "menu-template.csv")


@router.post("/import", response_model=CsvImportResult, dependencies=[can_manage_menu])
@limiter.shared_limit(UPLOAD_LIMIT, scope=UPLOAD_SCOPE)
async def import_menu(
    request: Request,
    file: UploadFile = File(..., description="CSV with the export's columns"),
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    """Create or update menu items by name (case-insensitive) and add any new categories"""
    content = await file.read()
    if len(content) > MAX_IMPORT_SIZE:
        raise ValidationFailed("File too large. Maximum size: 2MB", code="FILE_TOO_LARGE")
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationFailed("CSV must be UTF-8 encoded", code="INVALID_CSV")

    rows, errors = parse_menu_csv(text)

    result = await db.execute(select(MenuItem).where(MenuItem.tenant_id == tenant.id))
    existing = {item.name.lower(): item for item in result.scalars().all()}

    created = updated = 0
    for row in rows:
        item = existing.get(row["name"].lower())
        if item is None:
            item = MenuItem(tenant_id=tenant.id, **row)
            db.add(item)
            existing[row["name"].lower()] = item
            created += 1
        else:
            for field, value in row.items():
                setattr(item, field, value)
            updated += 1

    await ensure_categories(db, tenant.id, [row["category"] for row in rows])
    await db.commit()
    logger.info(f"Menu import for cafe {tenant.slug}: {created} created, {updated} updated, {len(errors)} errors")
    return CsvImportResult(created=created, updated=updated, errors=errors)


@router.post("", response_model=MenuItemResponse, status_code=status.HTTP_201_CREATED, dependencies=[can_manage_menu])
async def create_menu_item(
    item_data: MenuItemCreate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    item = MenuItem(tenant_id=tenant.id, **item_data.model_dump())
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


@router.get("/{item_id}", response_model=MenuItemResponse)
async def read_menu_item(
    item_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await get_menu_item(db, tenant.id, item_id)


@router.put("/{item_id}", response_model=MenuItemResponse, dependencies=[can_manage_menu])
async def update_menu_item(
    item_id: int,
    item_data: MenuItemUpdate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    item = await get_menu_item(db, tenant.id, item_id)
    for field, value in item_data.model_dump(exclude_unset=True).items():
        setattr(item, field, value)
    await db.commit()
    await db.refresh(item)
    return item


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_manage_menu])
async def delete_menu_item(
    item_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    item = await get_menu_item(db, tenant.id, item_id)
    image_url = item.image_url
    await db.delete(item)
    await db.commit()
    if image_url:
        delete_image(image_url)


@router.post("/{item_id}/image", response_model=MenuItemResponse, dependencies=[can_manage_menu])
@limiter.shared_limit(UPLOAD_LIMIT, scope=UPLOAD_SCOPE)
async def upload_menu_image(
    request: Request,
    item_id: int,
    file: UploadFile = File(..., description="Menu image (JPG, PNG, WebP, GIF, max 5MB)"),
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    item = await get_menu_item(db, tenant.id, item_id)
    item.image_url = await save_menu_image(file, tenant.id, item.id, old_image_url=item.image_url)
    await db.commit()
    await db.refresh(item)
    return item


# =============================================================================
# CATEGORIES
# =============================================================================

@categories_router.get("", response_model=List[CategoryResponse])
async def list_categories(
    include_inactive: bool = False,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    query = select(Category).where(Category.tenant_id == tenant.id)
    if not include_inactive:
        query = query.where(Category.is_active == True)
    result = await db.execute(query.order_by(Category.sort_order, Category.name))
    return result.scalars().all()


@categories_router.get("/with-counts", response_model=List[CategoryWithCount])
async def list_categories_with_counts(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    """Active categories with the number of available items in each"""
    result = await db.execute(
        select(Category, func.count(MenuItem.id))
        .outerjoin(
            MenuItem,
            (MenuItem.tenant_id == Category.tenant_id)
            & (func.lower(MenuItem.category) == func.lower(Category.name))
            & (MenuItem.is_available == True)
        )
        .where(Category.tenant_id == tenant.id, Category.is_active == True)
        .group_by(Category.id)
        .order_by(Category.sort_order, Category.name)
    )
    return [
        CategoryWithCount(**CategoryResponse.model_validate(category).model_dump(), item_count=count)
        for category, count in result.all()
    ]


@categories_router.post("/generate", response_model=List[CategoryWithCount], dependencies=[can_manage_menu])
async def generate_categories(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    """
    Rebuild the category list from the menu.

    Every category used by an available item is created or reactivated;
    categories no available item uses are deactivated. One transaction.
    """
    result = await db.execute(
        select(MenuItem.category, func.count(MenuItem.id))
        .where(MenuItem.tenant_id == tenant.id, MenuItem.is_available == True, MenuItem.category.isnot(None))
        .group_by(MenuItem.category)
    )
    rows = result.all()
    counts = {}
    for name, count in rows:
        key = name.strip().lower()
        if key:
            counts[key] = counts.get(key, 0) + count

    created = await ensure_categories(db, tenant.id, [name for name, _ in rows])

    result = await db.execute(select(Category).where(Category.tenant_id == tenant.id))
    generated = []
    for category in result.scalars().all():
        count = counts.get(category.name.lower(), 0)
        category.is_active = count > 0
        if category.is_active:
            generated.append((category, count))
    await db.commit()

    logger.info(f"Generated categories for cafe {tenant.slug}: {created} created, {len(generated)} active")
    generated.sort(key=lambda pair: (pair[0].sort_order, pair[0].name))
    return [
        CategoryWithCount(**CategoryResponse.model_validate(category).model_dump(), item_count=count)
        for category, count in generated
    ]


@categories_router.post(
    "", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED, dependencies=[can_manage_menu]
)
async def create_category(
    category_data: CategoryCreate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    if await find_category(db, tenant.id, category_data.name):
        raise DuplicateCategory()
    category = Category(tenant_id=tenant.id, **category_data.model_dump())
    category.name = category.name.strip()
    db.add(category)
    await db.commit()
    await db.refresh(category)
    return category


@categories_router.get("/{category_id}", response_model=CategoryResponse)
async def read_category(
    category_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await get_category(db, tenant.id, category_id)


@categories_router.put("/{category_id}", response_model=CategoryResponse, dependencies=[can_manage_menu])
async def update_category(
    category_id: int,
    category_data: CategoryUpdate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    category = await get_category(db, tenant.id, category_id)
    changes = category_data.model_dump(exclude_unset=True)

    new_name = changes.pop("name", None)
    if new_name is not None and new_name.strip() != category.name:
        new_name = new_name.strip()
        clash = await find_category(db, tenant.id, new_name)
        if clash is not None and clash.id != category.id:
            raise DuplicateCategory()
        await db.execute(
            update(MenuItem)
            .where(MenuItem.tenant_id == tenant.id, MenuItem.category == category.name)
            .values(category=new_name)
        )
        category.name = new_name

    for field, value in changes.items():
        setattr(category, field, value)
    await db.commit()
    await db.refresh(category)
    return category


@categories_router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_manage_menu])
async def delete_category(
    category_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    """Soft delete: the category is hidden, its menu items keep their category name"""
    category = await get_category(db, tenant.id, category_id)
    category.is_active = False
    await db.commit()
