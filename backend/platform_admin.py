"""
Platform Super Admin API Router

Platform-wide endpoints for managing cafes, their subscriptions and feature
overrides, impersonating a cafe for support, and reading the audit trails.

Access is restricted to super admin users only. Every route shares the
API rate limit bucket.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

import audit_service
from auth import get_current_super_admin
from config import settings
from database import get_db
from errors import ValidationFailed
from feature_service import list_features, set_override, clear_override, get_feature_resolution_details
from models import User, ImpersonationAction
from rate_limiter import limiter, API_LIMIT, API_SCOPE
from schemas import (
    CafeCreate, CafeUpdate, CafeResponse, SubscriptionUpdate, FeatureOverrideRequest,
    FeatureResponse, SubscriptionAuditResponse, ImpersonationAuditResponse
)
from subscription_service import update_cafe_subscription
from tenant_store import (
    get_tenant, get_tenant_by_slug, list_tenants, create_cafe_with_admin,
    update_tenant, deactivate_tenant
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Platform Admin"],
    dependencies=[Depends(get_current_super_admin)]
)


def _client_info(request: Request) -> tuple[Optional[str], Optional[str]]:
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


# =============================================================================
# CAFES
# =============================================================================

@router.get("/cafes", response_model=List[CafeResponse])
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def list_cafes(
    request: Request,
    include_inactive: bool = True,
    db: AsyncSession = Depends(get_db)
):
    return await list_tenants(db, include_inactive=include_inactive)


@router.post("/cafes", status_code=status.HTTP_201_CREATED)
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def create_cafe(
    request: Request,
    cafe_data: CafeCreate,
    current_user: User = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create a cafe on the FREE plan together with its first admin user"""
    if len(cafe_data.admin_password) < settings.MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters",
            code="PASSWORD_TOO_SHORT"
        )

    tenant, admin = await create_cafe_with_admin(
        db,
        name=cafe_data.name,
        slug=cafe_data.slug,
        admin_email=cafe_data.admin_email,
        admin_username=cafe_data.admin_username,
        admin_password=cafe_data.admin_password,
        admin_full_name=cafe_data.admin_full_name,
        email=cafe_data.email,
        phone=cafe_data.phone,
        address=cafe_data.address
    )
    logger.info(f"Super admin {current_user.id} created cafe {tenant.slug}")
    return {
        "cafe": CafeResponse.model_validate(tenant),
        "admin": {
            "id": admin.id,
            "email": admin.email,
            "username": admin.username,
            "role": admin.role,
        },
    }


@router.get("/cafes/{cafe_id}", response_model=CafeResponse)
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def read_cafe(
    request: Request,
    cafe_id: int,
    db: AsyncSession = Depends(get_db)
):
    return await get_tenant(db, cafe_id)


@router.put("/cafes/{cafe_id}", response_model=CafeResponse)
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def update_cafe(
    request: Request,
    cafe_id: int,
    cafe_data: CafeUpdate,
    current_user: User = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db)
):
    tenant = await get_tenant(db, cafe_id)
    changes = cafe_data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationFailed("No update fields provided", code="NO_UPDATE_FIELDS")
    tenant = await update_tenant(db, tenant, **changes)
    logger.info(f"Super admin {current_user.id} updated cafe {tenant.slug}: {sorted(changes)}")
    return tenant


@router.delete("/cafes/{cafe_id}", response_model=CafeResponse)
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def delete_cafe(
    request: Request,
    cafe_id: int,
    current_user: User = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db)
):
    """Soft delete: the cafe is deactivated and its data kept"""
    tenant = await deactivate_tenant(db, await get_tenant(db, cafe_id))
    logger.info(f"Super admin {current_user.id} deactivated cafe {tenant.slug}")
    return tenant


@router.put("/cafes/{cafe_id}/subscription")
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def update_subscription(
    request: Request,
    cafe_id: int,
    subscription_data: SubscriptionUpdate,
    current_user: User = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db)
):
    subscription = await update_cafe_subscription(
        db,
        cafe_id,
        plan=subscription_data.plan,
        status=subscription_data.status,
        changed_by=current_user.id
    )
    return {
        "cafe_id": cafe_id,
        "plan": subscription.plan,
        "status": subscription.status,
    }


# =============================================================================
# FEATURES
# =============================================================================

@router.get("/features", response_model=List[FeatureResponse])
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def list_feature_catalog(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    return await list_features(db)


@router.get("/cafes/{cafe_id}/features")
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def cafe_features(
    request: Request,
    cafe_id: int,
    db: AsyncSession = Depends(get_db)
):
    return await get_feature_resolution_details(db, cafe_id)


@router.post("/cafes/{cafe_id}/features/{feature_key}")
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def override_feature(
    request: Request,
    cafe_id: int,
    feature_key: str,
    override_data: FeatureOverrideRequest,
    current_user: User = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db)
):
    await set_override(db, cafe_id, feature_key, override_data.enabled, changed_by=current_user.id)
    return await get_feature_resolution_details(db, cafe_id)


@router.delete("/cafes/{cafe_id}/features/{feature_key}")
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def remove_feature_override(
    request: Request,
    cafe_id: int,
    feature_key: str,
    current_user: User = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db)
):
    await get_tenant(db, cafe_id)
    await clear_override(db, cafe_id, feature_key, changed_by=current_user.id)
    return await get_feature_resolution_details(db, cafe_id)


# =============================================================================
# IMPERSONATION
# =============================================================================

@router.post("/impersonate/{slug}")
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def start_impersonation(
    request: Request,
    slug: str,
    current_user: User = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Enter a cafe's context for support.

    The super admin keeps their own token (membership checks already let them
    into any cafe); this records who looked at which cafe, from where.
    """
    tenant = await get_tenant_by_slug(db, slug, include_inactive=True)
    ip_address, user_agent = _client_info(request)
    await audit_service.log_impersonation_event(
        current_user.id, current_user.email, tenant.id, tenant.slug, tenant.name,
        ImpersonationAction.STARTED, ip_address=ip_address, user_agent=user_agent
    )
    logger.info(f"Super admin {current_user.id} started impersonating cafe {tenant.slug} from {ip_address}")
    return {
        "message": f"Now viewing {tenant.name}",
        "cafe": CafeResponse.model_validate(tenant),
        "redirectTo": f"/cafes/{tenant.slug}",
        "startedAt": datetime.utcnow(),
    }


@router.post("/impersonate/{slug}/end")
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def end_impersonation(
    request: Request,
    slug: str,
    current_user: User = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db)
):
    tenant = await get_tenant_by_slug(db, slug, include_inactive=True)
    ip_address, user_agent = _client_info(request)
    await audit_service.log_impersonation_event(
        current_user.id, current_user.email, tenant.id, tenant.slug, tenant.name,
        ImpersonationAction.ENDED, ip_address=ip_address, user_agent=user_agent
    )
    logger.info(f"Super admin {current_user.id} stopped impersonating cafe {tenant.slug}")
    return {"message": f"Left {tenant.name}", "endedAt": datetime.utcnow()}


# =============================================================================
# AUDIT
# =============================================================================

@router.get("/audit/subscriptions", response_model=List[SubscriptionAuditResponse])
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def subscription_audit(
    request: Request,
    cafe_id: Optional[int] = None,
    action_type: Optional[str] = None,
    changed_by: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = audit_service.DEFAULT_LIMIT,
    offset: int = 0,
    db: AsyncSession = Depends(get_db)
):
    return await audit_service.list_subscription_audit(
        db,
        tenant_id=cafe_id,
        action_type=action_type,
        actor_id=changed_by,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=offset
    )


@router.get("/audit/impersonations", response_model=List[ImpersonationAuditResponse])
@limiter.shared_limit(API_LIMIT, scope=API_SCOPE)
async def impersonation_audit(
    request: Request,
    super_admin_id: Optional[int] = None,
    cafe_id: Optional[int] = None,
    action_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = audit_service.DEFAULT_LIMIT,
    offset: int = 0,
    db: AsyncSession = Depends(get_db)
):
    return await audit_service.list_impersonation_audit(
        db,
        super_admin_id=super_admin_id,
        cafe_id=cafe_id,
        action_type=action_type,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=offset
    )
