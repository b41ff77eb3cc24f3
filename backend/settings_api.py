"""
Cafe settings, resolved features/permissions and onboarding.

Every saved settings row is copied to tenant_settings_history.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy import select, desc, Boolean, Integer, Float
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_db
from errors import ValidationFailed
from feature_service import get_feature_resolution_details, to_bool
from models import Tenant, TenantSettings, TenantSettingsHistory, User, UserRole, SETTINGS_FIELDS
from permissions import Permission, RoleView, get_tenant_settings, default_settings_values
from schemas import OnboardingRequest, CafeResponse, TaxSettingsUpdate
from subscription_middleware import (
    require_membership, require_feature, require_permission, require_role, get_role_view_for_request
)
from tenant_store import complete_onboarding

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cafes/{slug}/settings",
    tags=["Settings"],
    dependencies=[Depends(require_feature("settings"))]
)

# Membership-only cafe endpoints
cafe_router = APIRouter(prefix="/api/cafes/{slug}", tags=["Cafe"])

can_access_settings = Depends(require_permission(Permission.ACCESS_SETTINGS))

ONBOARDING_SETTINGS = ("cafe_name", "address", "phone", "email", "currency", "tax_rate")


def coerce_settings(values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a partial settings payload against the settings columns.

    Raises:
        ValidationFailed: unknown fields or values of the wrong type
    """
    unknown = sorted(set(values) - set(SETTINGS_FIELDS))
    if unknown:
        raise ValidationFailed("Unknown settings fields", code="UNKNOWN_SETTINGS", fields=unknown)

    coerced = {}
    for name, value in values.items():
        column = TenantSettings.__table__.columns[name]
        if value is None:
            if not column.nullable:
                raise ValidationFailed(f"'{name}' cannot be empty", field=name)
            coerced[name] = None
            continue
        try:
            if isinstance(column.type, Boolean):
                coerced[name] = to_bool(value)
            elif isinstance(column.type, Integer):
                coerced[name] = int(value)
            elif isinstance(column.type, Float):
                coerced[name] = float(value)
            else:
                coerced[name] = str(value).strip()
        except (TypeError, ValueError):
            raise ValidationFailed(f"Invalid value for '{name}'", field=name)
    return coerced


async def save_settings(db: AsyncSession, tenant: Tenant, changes: Dict[str, Any], changed_by: int = None) -> TenantSettings:
    """Apply changes to the settings row (creating it if missing) and append a history snapshot"""
    settings_row = await get_tenant_settings(db, tenant.id)
    if settings_row is None:
        settings_row = TenantSettings(tenant_id=tenant.id, cafe_name=tenant.name)
        db.add(settings_row)
        await db.flush()

    for name, value in changes.items():
        setattr(settings_row, name, value)
    settings_row.updated_by = changed_by
    await db.flush()

    db.add(TenantSettingsHistory(tenant_id=tenant.id, changed_by=changed_by, **settings_row.snapshot()))
    await db.commit()
    await db.refresh(settings_row)
    return settings_row


def _settings_payload(tenant: Tenant, settings_row) -> dict:
    values = settings_row.snapshot() if settings_row else default_settings_values()
    values["tenant_id"] = tenant.id
    values["updated_at"] = settings_row.updated_at if settings_row else None
    return values


# =============================================================================
# SETTINGS
# =============================================================================

@router.get("")
async def read_settings(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return _settings_payload(tenant, await get_tenant_settings(db, tenant.id))


@router.put("", dependencies=[can_access_settings])
async def update_settings(
    payload: Dict[str, Any] = Body(...),
    tenant: Tenant = Depends(require_membership),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    changes = coerce_settings(payload)
    if not changes:
        raise ValidationFailed("No settings fields provided", code="NO_UPDATE_FIELDS")
    settings_row = await save_settings(db, tenant, changes, changed_by=current_user.id)
    logger.info(f"Settings updated for cafe {tenant.slug} by user {current_user.id}: {sorted(changes)}")
    return _settings_payload(tenant, settings_row)


@router.get("/history", dependencies=[can_access_settings])
async def settings_history(
    limit: int = Query(50, ge=1, le=500),
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
) -> List[dict]:
    result = await db.execute(
        select(TenantSettingsHistory)
        .where(TenantSettingsHistory.tenant_id == tenant.id)
        .order_by(desc(TenantSettingsHistory.changed_at), desc(TenantSettingsHistory.id))
        .limit(limit)
    )
    return [
        {
            "id": entry.id,
            "changed_by": entry.changed_by,
            "changed_at": entry.changed_at,
            "settings": {name: getattr(entry, name) for name in SETTINGS_FIELDS},
        }
        for entry in result.scalars().all()
    ]


# =============================================================================
# TAX
# =============================================================================

TAX_FIELDS = ("tax_rate", "tax_name", "include_tax")


def _tax_payload(values: dict) -> dict:
    return {name: values[name] for name in TAX_FIELDS}


@router.get("/tax")
async def read_tax_settings(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    settings_row = await get_tenant_settings(db, tenant.id)
    return _tax_payload(settings_row.snapshot() if settings_row else default_settings_values())


@router.put("/tax", dependencies=[can_access_settings])
async def update_tax_settings(
    tax_data: TaxSettingsUpdate,
    tenant: Tenant = Depends(require_membership),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    changes = tax_data.model_dump(exclude_none=True)
    if "tax_name" in changes:
        changes["tax_name"] = changes["tax_name"].strip()
    settings_row = await save_settings(db, tenant, changes, changed_by=current_user.id)
    logger.info(f"Tax set to {settings_row.tax_name} {settings_row.tax_rate}% for cafe {tenant.slug}")
    return _tax_payload(settings_row.snapshot())


@router.get("/tax/history", dependencies=[can_access_settings])
async def tax_history(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
) -> List[dict]:
    """Settings snapshots where the tax configuration changed, newest first"""
    result = await db.execute(
        select(TenantSettingsHistory)
        .where(TenantSettingsHistory.tenant_id == tenant.id)
        .order_by(TenantSettingsHistory.changed_at, TenantSettingsHistory.id)
    )
    entries, previous = [], None
    for entry in result.scalars().all():
        current = tuple(getattr(entry, name) for name in TAX_FIELDS)
        if current == previous:
            continue
        previous = current
        entries.append({
            "id": entry.id,
            "changed_by": entry.changed_by,
            "changed_at": entry.changed_at,
            **dict(zip(TAX_FIELDS, current)),
        })
    entries.reverse()
    return entries


# =============================================================================
# RESOLVED FEATURES / PERMISSIONS
# =============================================================================

@cafe_router.get("/features")
async def cafe_features(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await get_feature_resolution_details(db, tenant.id)


@cafe_router.get("/permissions")
async def cafe_permissions(role_view: RoleView = Depends(get_role_view_for_request)):
    return role_view.to_dict()


# =============================================================================
# ONBOARDING
# =============================================================================

@cafe_router.get("/onboarding")
async def onboarding_status(tenant: Tenant = Depends(require_membership)):
    return {
        "is_onboarded": tenant.is_onboarded,
        "onboarding_data": tenant.onboarding_data,
    }


@cafe_router.post(
    "/onboarding",
    response_model=CafeResponse,
    dependencies=[Depends(require_role(UserRole.ADMIN, UserRole.USER))]
)
async def submit_onboarding(
    onboarding: OnboardingRequest,
    tenant: Tenant = Depends(require_membership),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Store business details in settings and mark the cafe onboarded"""
    data = onboarding.model_dump(exclude_none=True)
    changes = {name: data[name] for name in ONBOARDING_SETTINGS if name in data}
    if changes:
        await save_settings(db, tenant, coerce_settings(changes), changed_by=current_user.id)

    tenant = await complete_onboarding(db, tenant, data)
    logger.info(f"Cafe {tenant.slug} onboarded by user {current_user.id}")
    return tenant
