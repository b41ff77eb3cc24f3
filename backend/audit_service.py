"""
Audit Service

Append-only records of subscription, feature and impersonation changes.

Writes use their own session so they never join the business transaction, and
they are best-effort: a failed write is logged and swallowed.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

import database
from models import SubscriptionAuditLog, ImpersonationAuditLog, SubscriptionAuditAction, ImpersonationAction

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(int(limit), MAX_LIMIT))


async def log_subscription_event(
    tenant_id: int,
    action_type: SubscriptionAuditAction,
    previous_value: Optional[str],
    new_value: Optional[str],
    changed_by: Optional[int] = None,
    feature_key: Optional[str] = None
) -> bool:
    """Append a subscription audit row. Returns False when the write failed."""
    try:
        async with database.async_session_maker() as db:
            db.add(SubscriptionAuditLog(
                tenant_id=tenant_id,
                action_type=SubscriptionAuditAction(action_type).value,
                previous_value=previous_value,
                new_value=new_value,
                feature_key=feature_key,
                changed_by=changed_by
            ))
            await db.commit()
        return True
    except Exception as e:
        logger.warning(
            f"Failed to write subscription audit entry ({action_type}) for cafe {tenant_id}: {e}",
            extra={"tenant_id": tenant_id, "actor_id": changed_by}
        )
        return False


async def log_impersonation_event(
    super_admin_id: int,
    super_admin_email: str,
    cafe_id: int,
    cafe_slug: str,
    cafe_name: str,
    action_type: ImpersonationAction,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> bool:
    """Append an impersonation audit row. Returns False when the write failed."""
    try:
        async with database.async_session_maker() as db:
            db.add(ImpersonationAuditLog(
                super_admin_id=super_admin_id,
                super_admin_email=super_admin_email,
                cafe_id=cafe_id,
                cafe_slug=cafe_slug,
                cafe_name=cafe_name,
                action_type=ImpersonationAction(action_type).value,
                ip_address=ip_address,
                user_agent=user_agent
            ))
            await db.commit()
        return True
    except Exception as e:
        logger.warning(
            f"Failed to write impersonation audit entry ({action_type}) for cafe {cafe_id}: {e}",
            extra={"tenant_id": cafe_id, "actor_id": super_admin_id}
        )
        return False


async def list_subscription_audit(
    db: AsyncSession,
    tenant_id: Optional[int] = None,
    action_type: Optional[str] = None,
    actor_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = DEFAULT_LIMIT,
    offset: int = 0
) -> List[SubscriptionAuditLog]:
    query = select(SubscriptionAuditLog)
    if tenant_id is not None:
        query = query.where(SubscriptionAuditLog.tenant_id == tenant_id)
    if action_type:
        query = query.where(SubscriptionAuditLog.action_type == action_type)
    if actor_id is not None:
        query = query.where(SubscriptionAuditLog.changed_by == actor_id)
    if start:
        query = query.where(SubscriptionAuditLog.created_at >= start)
    if end:
        query = query.where(SubscriptionAuditLog.created_at <= end)

    query = query.order_by(desc(SubscriptionAuditLog.created_at), desc(SubscriptionAuditLog.id))
    query = query.offset(max(offset, 0)).limit(clamp_limit(limit))
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_impersonation_audit(
    db: AsyncSession,
    super_admin_id: Optional[int] = None,
    cafe_id: Optional[int] = None,
    action_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = DEFAULT_LIMIT,
    offset: int = 0
) -> List[ImpersonationAuditLog]:
    query = select(ImpersonationAuditLog)
    if super_admin_id is not None:
        query = query.where(ImpersonationAuditLog.super_admin_id == super_admin_id)
    if cafe_id is not None:
        query = query.where(ImpersonationAuditLog.cafe_id == cafe_id)
    if action_type:
        query = query.where(ImpersonationAuditLog.action_type == action_type)
    if start:
        query = query.where(ImpersonationAuditLog.created_at >= start)
    if end:
        query = query.where(ImpersonationAuditLog.created_at <= end)

    query = query.order_by(desc(ImpersonationAuditLog.created_at), desc(ImpersonationAuditLog.id))
    query = query.offset(max(offset, 0)).limit(clamp_limit(limit))
    result = await db.execute(query)
    return list(result.scalars().all())
