"""
Tenant store: persistence of cafes, their subscription columns and onboarding state.
"""

import logging
import re
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import DuplicateSlug, InvalidSlug, TenantNotFound
from models import Tenant, TenantSettings, PaymentMethod, SubscriptionPlan, SubscriptionStatus, UserRole

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9-]{1,64}$")

UPDATABLE_FIELDS = {"name", "email", "phone", "address", "logo_url", "is_active", "is_onboarded", "onboarding_data"}

DEFAULT_PAYMENT_METHODS = [
    {"name": "Cash", "code": "cash", "description": "Cash payment", "icon": "cash", "display_order": 1},
    {"name": "UPI", "code": "upi", "description": "UPI payment", "icon": "upi", "display_order": 2},
]


def normalize_slug(raw: Optional[str]) -> str:
    slug = (raw or "").strip().lower()
    if not SLUG_PATTERN.match(slug):
        raise InvalidSlug()
    return slug


async def get_tenant(db: AsyncSession, tenant_id: int) -> Tenant:
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise TenantNotFound()
    return tenant


async def get_tenant_by_slug(db: AsyncSession, slug: str, include_inactive: bool = False) -> Tenant:
    query = select(Tenant).where(Tenant.slug == (slug or "").strip().lower())
    if not include_inactive:
        query = query.where(Tenant.is_active == True)
    result = await db.execute(query)
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise TenantNotFound()
    return tenant


async def list_tenants(db: AsyncSession, include_inactive: bool = True) -> List[Tenant]:
    query = select(Tenant).order_by(Tenant.id)
    if not include_inactive:
        query = query.where(Tenant.is_active == True)
    result = await db.execute(query)
    return list(result.scalars().all())


async def create_tenant(
    db: AsyncSession,
    name: str,
    slug: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    commit: bool = True
) -> Tenant:
    """Create a cafe on the FREE plan, active and not yet onboarded"""
    slug = normalize_slug(slug)

    result = await db.execute(select(Tenant.id).where(Tenant.slug == slug))
    if result.scalar_one_or_none() is not None:
        raise DuplicateSlug()

    tenant = Tenant(
        name=name,
        slug=slug,
        email=email,
        phone=phone,
        address=address,
        subscription_plan=SubscriptionPlan.FREE.value,
        subscription_status=SubscriptionStatus.ACTIVE.value,
        is_onboarded=False,
        is_active=True
    )
    db.add(tenant)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise DuplicateSlug()

    await ensure_tenant_defaults(db, tenant)

    if commit:
        await db.commit()
        await db.refresh(tenant)
    return tenant


async def ensure_tenant_defaults(db: AsyncSession, tenant: Tenant) -> bool:
    """Create the settings row and default payment methods when missing. Returns True if anything was added."""
    added = False

    result = await db.execute(select(TenantSettings.id).where(TenantSettings.tenant_id == tenant.id))
    if result.scalar_one_or_none() is None:
        db.add(TenantSettings(tenant_id=tenant.id, cafe_name=tenant.name))
        added = True

    result = await db.execute(select(PaymentMethod.id).where(PaymentMethod.tenant_id == tenant.id).limit(1))
    if result.scalar_one_or_none() is None:
        for method in DEFAULT_PAYMENT_METHODS:
            db.add(PaymentMethod(tenant_id=tenant.id, is_active=True, **method))
        added = True

    if added:
        await db.flush()
    return added


async def create_cafe_with_admin(
    db: AsyncSession,
    name: str,
    slug: str,
    admin_email: str,
    admin_username: str,
    admin_password: str,
    admin_full_name: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None
):
    """Create a cafe and bind its first admin user in a single transaction"""
    from identity_store import create_user

    try:
        tenant = await create_tenant(db, name=name, slug=slug, email=email, phone=phone, address=address, commit=False)
        admin = await create_user(
            db,
            email=admin_email,
            username=admin_username,
            password=admin_password,
            role=UserRole.ADMIN.value,
            tenant_id=tenant.id,
            full_name=admin_full_name,
            commit=False
        )
    except Exception:
        await db.rollback()
        raise
    await db.commit()
    await db.refresh(tenant)
    await db.refresh(admin)

    logger.info(f"Created cafe '{tenant.slug}' (id={tenant.id}) with admin {admin.username}")
    return tenant, admin


async def update_tenant(db: AsyncSession, tenant: Tenant, **fields) -> Tenant:
    """Partial update of the plain tenant columns; subscription changes go through subscription_service"""
    for field, value in fields.items():
        if field not in UPDATABLE_FIELDS:
            continue
        setattr(tenant, field, value)
    await db.commit()
    await db.refresh(tenant)
    return tenant


async def deactivate_tenant(db: AsyncSession, tenant: Tenant) -> Tenant:
    """Soft delete: cafes are never removed"""
    return await update_tenant(db, tenant, is_active=False)


async def complete_onboarding(db: AsyncSession, tenant: Tenant, onboarding_data: Optional[dict]) -> Tenant:
    return await update_tenant(db, tenant, is_onboarded=True, onboarding_data=onboarding_data or {})
