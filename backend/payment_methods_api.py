"""
Payment method routes (feature: payment_methods).

Listing needs view_payments; every change needs access_settings.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from errors import NotFound, Conflict, ValidationFailed
from models import PaymentMethod, Tenant
from permissions import Permission
from schemas import PaymentMethodCreate, PaymentMethodUpdate, PaymentMethodResponse, PaymentMethodReorder
from subscription_middleware import require_membership, require_feature, require_permission

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cafes/{slug}/payment-methods",
    tags=["Payment Methods"],
    dependencies=[Depends(require_feature("payment_methods"))]
)

can_view_payments = Depends(require_permission(Permission.VIEW_PAYMENTS))
can_access_settings = Depends(require_permission(Permission.ACCESS_SETTINGS))


class PaymentMethodNotFound(NotFound):
    code = "PAYMENT_METHOD_NOT_FOUND"
    message = "Payment method not found"


class DuplicatePaymentMethod(Conflict):
    code = "DUPLICATE_PAYMENT_METHOD"
    message = "A payment method with this code already exists"


async def get_payment_method(db: AsyncSession, tenant_id: int, method_id: int) -> PaymentMethod:
    result = await db.execute(
        select(PaymentMethod).where(PaymentMethod.id == method_id, PaymentMethod.tenant_id == tenant_id)
    )
    method = result.scalar_one_or_none()
    if not method:
        raise PaymentMethodNotFound()
    return method


async def set_display_order(db: AsyncSession, tenant_id: int, method_id: int, display_order: int) -> None:
    result = await db.execute(
        update(PaymentMethod)
        .where(PaymentMethod.id == method_id, PaymentMethod.tenant_id == tenant_id)
        .values(display_order=display_order)
    )
    if result.rowcount != 1:
        raise PaymentMethodNotFound(f"Payment method {method_id} not found")


async def reorder_payment_methods(db: AsyncSession, tenant_id: int, ids: List[int]) -> None:
    """
    Give ids[i] display_order i + 1, all or nothing.

    Any failing update rolls back every position written before it.
    """
    if len(set(ids)) != len(ids):
        raise ValidationFailed("Payment method ids must be unique", code="INVALID_REORDER")

    try:
        for position, method_id in enumerate(ids, start=1):
            await set_display_order(db, tenant_id, method_id, position)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.warning(f"Payment method reorder for cafe {tenant_id} rolled back")
        raise


@router.get("", response_model=List[PaymentMethodResponse], dependencies=[can_view_payments])
async def list_payment_methods(
    active_only: bool = False,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    query = select(PaymentMethod).where(PaymentMethod.tenant_id == tenant.id)
    if active_only:
        query = query.where(PaymentMethod.is_active == True)
    result = await db.execute(query.order_by(PaymentMethod.display_order, PaymentMethod.id))
    return result.scalars().all()


@router.post("", response_model=PaymentMethodResponse, status_code=status.HTTP_201_CREATED, dependencies=[can_access_settings])
async def create_payment_method(
    method_data: PaymentMethodCreate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    code = method_data.code.strip().lower()
    result = await db.execute(
        select(PaymentMethod.id).where(PaymentMethod.tenant_id == tenant.id, PaymentMethod.code == code)
    )
    if result.scalar_one_or_none() is not None:
        raise DuplicatePaymentMethod()

    display_order = method_data.display_order
    if display_order is None:
        result = await db.execute(
            select(func.coalesce(func.max(PaymentMethod.display_order), 0)).where(PaymentMethod.tenant_id == tenant.id)
        )
        display_order = result.scalar_one() + 1

    method = PaymentMethod(
        tenant_id=tenant.id,
        name=method_data.name.strip(),
        code=code,
        description=method_data.description,
        icon=method_data.icon,
        display_order=display_order,
        is_active=method_data.is_active
    )
    db.add(method)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicatePaymentMethod()
    await db.refresh(method)
    return method


@router.post("/reorder", response_model=List[PaymentMethodResponse], dependencies=[can_access_settings])
async def reorder(
    reorder_data: PaymentMethodReorder,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    tenant_id = tenant.id
    await reorder_payment_methods(db, tenant_id, reorder_data.ids)
    result = await db.execute(
        select(PaymentMethod)
        .where(PaymentMethod.tenant_id == tenant_id)
        .order_by(PaymentMethod.display_order, PaymentMethod.id)
    )
    return result.scalars().all()


@router.put("/{method_id}", response_model=PaymentMethodResponse, dependencies=[can_access_settings])
async def update_payment_method(
    method_id: int,
    method_data: PaymentMethodUpdate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    method = await get_payment_method(db, tenant.id, method_id)
    for field, value in method_data.model_dump(exclude_unset=True).items():
        setattr(method, field, value)
    await db.commit()
    await db.refresh(method)
    return method


@router.patch("/{method_id}/toggle", response_model=PaymentMethodResponse, dependencies=[can_access_settings])
async def toggle_payment_method(
    method_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    method = await get_payment_method(db, tenant.id, method_id)
    method.is_active = not method.is_active
    await db.commit()
    await db.refresh(method)
    return method


@router.delete("/{method_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_access_settings])
async def delete_payment_method(
    method_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    method = await get_payment_method(db, tenant.id, method_id)
    await db.delete(method)
    await db.commit()
