"""
Subscription Service

Resolves a cafe's plan and status from its persisted columns and applies
super-admin plan/status changes, emitting one audit entry per changed field.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import audit_service
from errors import CafeNotFound, InvalidPlan, InvalidStatus, ValidationFailed
from models import Tenant, SubscriptionPlan, SubscriptionStatus, SubscriptionAuditAction

logger = logging.getLogger(__name__)

VALID_PLANS = {plan.value for plan in SubscriptionPlan}
VALID_STATUSES = {status.value for status in SubscriptionStatus}


@dataclass(frozen=True)
class Subscription:
    plan: str
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value

    def to_dict(self) -> dict:
        return {"plan": self.plan, "status": self.status}


def resolve_subscription(tenant: Tenant) -> Subscription:
    """Plan and status of a cafe. Unset columns mean FREE / active."""
    plan = (tenant.subscription_plan or SubscriptionPlan.FREE.value).strip().upper()
    if plan not in VALID_PLANS:
        logger.warning(f"Cafe {tenant.id} has unknown plan '{tenant.subscription_plan}', treating as FREE")
        plan = SubscriptionPlan.FREE.value

    status = (tenant.subscription_status or SubscriptionStatus.ACTIVE.value).strip().lower()
    return Subscription(plan=plan, status=status)


async def get_cafe_subscription(db: AsyncSession, tenant_id: int) -> Subscription:
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise CafeNotFound()
    return resolve_subscription(tenant)


async def update_cafe_subscription(
    db: AsyncSession,
    tenant_id: int,
    plan: Optional[str] = None,
    status: Optional[str] = None,
    changed_by: Optional[int] = None
) -> Subscription:
    """
    Change a cafe's plan and/or status.

    Emits PLAN_CHANGED when the plan changes and CAFE_ACTIVATED or
    CAFE_DEACTIVATED when the status changes. Unchanged fields emit nothing.

    Raises:
        ValidationFailed: neither plan nor status given
        InvalidPlan / InvalidStatus: value outside the allowed set
        CafeNotFound: unknown cafe id
    """
    if plan is None and status is None:
        raise ValidationFailed("No subscription fields provided", code="NO_UPDATE_FIELDS")

    new_plan = None
    if plan is not None:
        new_plan = str(plan).strip().upper()
        if new_plan not in VALID_PLANS:
            raise InvalidPlan()

    new_status = None
    if status is not None:
        new_status = str(status).strip().lower()
        if new_status not in VALID_STATUSES:
            raise InvalidStatus()

    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise CafeNotFound()

    previous = resolve_subscription(tenant)

    if new_plan is not None:
        tenant.subscription_plan = new_plan
    if new_status is not None:
        tenant.subscription_status = new_status
    await db.commit()
    await db.refresh(tenant)

    from feature_service import feature_cache
    feature_cache.invalidate(tenant_id)

    current = resolve_subscription(tenant)

    if new_plan is not None and current.plan != previous.plan:
        logger.info(f"Cafe {tenant_id} plan changed {previous.plan} -> {current.plan} by user {changed_by}")
        await audit_service.log_subscription_event(
            tenant_id, SubscriptionAuditAction.PLAN_CHANGED, previous.plan, current.plan, changed_by
        )

    if new_status is not None and current.status != previous.status:
        action = (
            SubscriptionAuditAction.CAFE_ACTIVATED if current.is_active
            else SubscriptionAuditAction.CAFE_DEACTIVATED
        )
        logger.info(f"Cafe {tenant_id} status changed {previous.status} -> {current.status} by user {changed_by}")
        await audit_service.log_subscription_event(
            tenant_id, action, previous.status, current.status, changed_by
        )

    return current
