"""
Subscription Middleware

Request-time authorization pipeline for cafe-scoped routes, as composable
FastAPI dependencies:

    authenticate -> resolve cafe from path -> membership -> active subscription
    -> feature entitlement -> role permission

Each stage short-circuits with its own error code. Stages depend on the ones
before them, so declaring only the last stage on a route runs the whole chain
in this order.
"""

import logging

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_db
from errors import (
    CrossTenantForbidden, SubscriptionInactive, FeatureAccessDenied,
    RoleForbidden, OnboardingRequired
)
from feature_service import tenant_has_feature
from models import Tenant, User, UserRole
from permissions import Permission, RoleView, get_role_view
from subscription_service import Subscription, resolve_subscription
from tenant_store import get_tenant_by_slug

logger = logging.getLogger(__name__)


async def resolve_tenant(
    slug: str,
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> Tenant:
    """Look up the cafe named in the URL (404 TENANT_NOT_FOUND)"""
    tenant = await get_tenant_by_slug(db, slug)
    request.state.tenant = tenant
    request.state.tenant_id = tenant.id
    return tenant


async def require_membership(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(resolve_tenant)
) -> Tenant:
    """Super admins pass; everyone else must belong to the cafe"""
    if current_user.is_super_admin:
        return tenant
    if current_user.tenant_id != tenant.id:
        logger.warning(
            f"User {current_user.id} (cafe {current_user.tenant_id}) denied access to cafe {tenant.id}",
            extra={"principal_id": current_user.id, "tenant_id": tenant.id}
        )
        raise CrossTenantForbidden()
    return tenant


async def require_active_subscription(
    request: Request,
    tenant: Tenant = Depends(require_membership)
) -> Subscription:
    subscription = resolve_subscription(tenant)
    if not subscription.is_active:
        raise SubscriptionInactive(
            f"Subscription is {subscription.status}. Please activate your subscription to access this feature.",
            subscription_status=subscription.status
        )
    request.state.subscription = subscription
    return subscription


async def require_onboarded(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(require_membership)
) -> Tenant:
    if current_user.is_super_admin or tenant.is_onboarded:
        return tenant
    raise OnboardingRequired(redirect_to=f"/cafes/{tenant.slug}/onboarding")


def require_feature(feature_key: str):
    """
    Dependency factory gating a route on a resolved feature.

    Usage:
        @router.get("/analytics", dependencies=[Depends(require_feature("analytics"))])
    """
    async def checker(
        current_user: User = Depends(get_current_user),
        tenant: Tenant = Depends(require_membership),
        subscription: Subscription = Depends(require_active_subscription),
        db: AsyncSession = Depends(get_db)
    ) -> bool:
        if current_user.is_super_admin:
            return True
        if not await tenant_has_feature(db, tenant.id, feature_key):
            raise FeatureAccessDenied(
                f"The '{feature_key}' feature is not available on the {subscription.plan} plan",
                feature=feature_key,
                current_plan=subscription.plan
            )
        return True
    return checker


async def get_role_view_for_request(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
) -> RoleView:
    return await get_role_view(db, tenant.id, current_user.role)


def require_permission(permission: Permission):
    """Dependency factory for settings-driven permission checks (403 ROLE_FORBIDDEN)"""
    async def checker(role_view: RoleView = Depends(get_role_view_for_request)) -> bool:
        if not role_view.can(permission):
            raise RoleForbidden(
                f"Permission '{permission.value}' required",
                required_permission=permission.value
            )
        return True
    return checker


def require_role(*roles: UserRole):
    """Dependency factory restricting a route to specific roles; super admins always pass"""
    allowed = {UserRole(role).value for role in roles}

    async def checker(current_user: User = Depends(get_current_user)) -> bool:
        if current_user.is_super_admin or current_user.role in allowed:
            return True
        raise RoleForbidden(required_roles=sorted(allowed))
    return checker

