"""
Feature Service

Global feature catalog, per-cafe overrides and the resolution of
"is feature F enabled for cafe T":

1. A cafe whose subscription status is not active has every feature off.
2. Otherwise a per-cafe override wins.
3. Otherwise the plan default applies (default_pro on PRO, default_free on FREE).
"""

import logging
import time
from typing import Dict, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

import audit_service
from config import settings
from errors import TenantNotFound, UnknownFeature
from models import Tenant, Feature, TenantFeatureOverride, SubscriptionPlan, SubscriptionAuditAction
from subscription_service import resolve_subscription

logger = logging.getLogger(__name__)


def to_bool(value) -> bool:
    """Normalize driver booleans (True/False, 1/0, "1"/"0", "true"/"false")"""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "yes")
    return False


class FeatureCache:
    """Per-cafe TTL cache of resolved feature maps"""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[int, tuple] = {}

    def get(self, tenant_id: int) -> Optional[Dict[str, bool]]:
        if self.ttl_seconds <= 0:
            return None
        entry = self._entries.get(tenant_id)
        if entry is None:
            return None
        expires_at, features = entry
        if expires_at < time.monotonic():
            self._entries.pop(tenant_id, None)
            return None
        return dict(features)

    def set(self, tenant_id: int, features: Dict[str, bool]) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[tenant_id] = (time.monotonic() + self.ttl_seconds, dict(features))

    def invalidate(self, tenant_id: int) -> None:
        self._entries.pop(tenant_id, None)

    def clear(self) -> None:
        self._entries.clear()


feature_cache = FeatureCache(settings.FEATURE_CACHE_TTL_SECONDS)


# =============================================================================
# CATALOG
# =============================================================================

async def list_features(db: AsyncSession) -> List[Feature]:
    result = await db.execute(select(Feature).order_by(Feature.id))
    return list(result.scalars().all())


async def get_feature(db: AsyncSession, key: str) -> Optional[Feature]:
    result = await db.execute(select(Feature).where(Feature.key == key))
    return result.scalar_one_or_none()


async def get_overrides(db: AsyncSession, tenant_id: int) -> Dict[str, bool]:
    result = await db.execute(
        select(TenantFeatureOverride.feature_key, TenantFeatureOverride.enabled)
        .where(TenantFeatureOverride.tenant_id == tenant_id)
    )
    return {key: to_bool(enabled) for key, enabled in result.all()}


async def _load_tenant(db: AsyncSession, tenant_id: int) -> Tenant:
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise TenantNotFound()
    return tenant


def _plan_default(feature: Feature, plan: str) -> bool:
    if plan == SubscriptionPlan.PRO.value:
        return to_bool(feature.default_pro)
    return to_bool(feature.default_free)


# =============================================================================
# RESOLUTION
# =============================================================================

async def resolve_tenant_features(db: AsyncSession, tenant_id: int) -> Dict[str, bool]:
    """Resolved on/off value of every catalog feature for a cafe"""
    cached = feature_cache.get(tenant_id)
    if cached is not None:
        return cached

    tenant = await _load_tenant(db, tenant_id)
    subscription = resolve_subscription(tenant)
    features = await list_features(db)

    if not subscription.is_active:
        resolved = {feature.key: False for feature in features}
    else:
        overrides = await get_overrides(db, tenant_id)
        resolved = {}
        for feature in features:
            if feature.key in overrides:
                resolved[feature.key] = overrides[feature.key]
            else:
                resolved[feature.key] = _plan_default(feature, subscription.plan)

    feature_cache.set(tenant_id, resolved)
    return resolved


async def tenant_has_feature(db: AsyncSession, tenant_id: int, feature_key: str) -> bool:
    features = await resolve_tenant_features(db, tenant_id)
    return features.get(feature_key, False)


async def get_feature_resolution_details(db: AsyncSession, tenant_id: int) -> dict:
    """Per-feature breakdown of plan defaults, override and the resolved value with its source"""
    tenant = await _load_tenant(db, tenant_id)
    subscription = resolve_subscription(tenant)
    features = await list_features(db)
    overrides = await get_overrides(db, tenant_id)

    details = []
    for feature in features:
        override = overrides.get(feature.key)
        if override is not None:
            enabled, source = override, "override"
        else:
            enabled, source = _plan_default(feature, subscription.plan), "plan"
        if not subscription.is_active:
            enabled = False

        details.append({
            "key": feature.key,
            "name": feature.name,
            "description": feature.description,
            "planDefaults": {
                "free": to_bool(feature.default_free),
                "pro": to_bool(feature.default_pro),
            },
            "override": {"enabled": override} if override is not None else None,
            "resolved": {"enabled": enabled, "source": source},
        })

    return {
        "cafe": {
            "id": tenant.id,
            "name": tenant.name,
            "slug": tenant.slug,
            "plan": subscription.plan,
            "status": subscription.status,
        },
        "features": details,
    }


# =============================================================================
# OVERRIDES
# =============================================================================

def _audit_action(enabled: bool) -> SubscriptionAuditAction:
    return SubscriptionAuditAction.FEATURE_ENABLED if enabled else SubscriptionAuditAction.FEATURE_DISABLED


def _label(enabled: bool) -> str:
    return "enabled" if enabled else "disabled"


async def set_override(
    db: AsyncSession,
    tenant_id: int,
    feature_key: str,
    enabled,
    changed_by: Optional[int] = None
) -> TenantFeatureOverride:
    """Force a feature on or off for a cafe regardless of its plan"""
    await _load_tenant(db, tenant_id)
    if await get_feature(db, feature_key) is None:
        raise UnknownFeature(f"Unknown feature '{feature_key}'")

    enabled = to_bool(enabled)
    previous = await tenant_has_feature(db, tenant_id, feature_key)

    result = await db.execute(
        select(TenantFeatureOverride).where(
            TenantFeatureOverride.tenant_id == tenant_id,
            TenantFeatureOverride.feature_key == feature_key
        )
    )
    override = result.scalar_one_or_none()
    if override:
        override.enabled = enabled
    else:
        override = TenantFeatureOverride(tenant_id=tenant_id, feature_key=feature_key, enabled=enabled)
        db.add(override)

    await db.commit()
    await db.refresh(override)
    feature_cache.invalidate(tenant_id)

    logger.info(f"Feature '{feature_key}' {_label(enabled)} for cafe {tenant_id} by user {changed_by}")
    await audit_service.log_subscription_event(
        tenant_id, _audit_action(enabled), _label(previous), _label(enabled),
        changed_by=changed_by, feature_key=feature_key
    )
    return override


async def clear_override(
    db: AsyncSession,
    tenant_id: int,
    feature_key: str,
    changed_by: Optional[int] = None
) -> None:
    """Remove an override so the plan default applies again. Absent overrides are not an error."""
    previous = await tenant_has_feature(db, tenant_id, feature_key)

    result = await db.execute(
        delete(TenantFeatureOverride).where(
            TenantFeatureOverride.tenant_id == tenant_id,
            TenantFeatureOverride.feature_key == feature_key
        )
    )
    await db.commit()
    feature_cache.invalidate(tenant_id)

    if not result.rowcount:
        return

    current = await tenant_has_feature(db, tenant_id, feature_key)
    logger.info(f"Feature override '{feature_key}' cleared for cafe {tenant_id} by user {changed_by}")
    if current != previous:
        await audit_service.log_subscription_event(
            tenant_id, _audit_action(current), _label(previous), _label(current),
            changed_by=changed_by, feature_key=feature_key
        )
