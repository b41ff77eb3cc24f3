"""
Customer routes.

Public customer login/registration (cafe named by slug) and the cafe-scoped
customer directory with search, statistics and loyalty redemption.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select, func, or_, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import metrics_service
from database import get_db
from errors import CafeIdRequired, NotFound, Conflict, InsufficientPoints
from models import Customer, Order, Tenant
from permissions import Permission
from rate_limiter import limiter, AUTH_LIMIT, AUTH_SCOPE
from schemas import (
    CustomerCreate, CustomerUpdate, CustomerRegister, CustomerResponse,
    RedeemPointsRequest, OrderResponse
)
from subscription_middleware import require_membership, require_feature, require_permission
from tenant_store import get_tenant_by_slug

logger = logging.getLogger(__name__)

# 1 loyalty point per this many currency units spent
CURRENCY_PER_POINT = 10
# Redemption value of one loyalty point
POINT_VALUE = 0.1

public_router = APIRouter(prefix="/api/customer", tags=["Customer Portal"])

router = APIRouter(
    prefix="/api/cafes/{slug}/customers",
    tags=["Customers"],
    dependencies=[
        Depends(require_feature("customers")),
        Depends(require_permission(Permission.VIEW_CUSTOMERS)),
    ]
)


class CustomerNotFound(NotFound):
    code = "CUSTOMER_NOT_FOUND"
    message = "Customer not found"


class DuplicateCustomer(Conflict):
    code = "DUPLICATE_CUSTOMER"
    message = "Customer with this phone number already exists"


def calculate_points(amount: float) -> int:
    return int((amount or 0) // CURRENCY_PER_POINT)


def record_visit(customer: Customer, amount: float, points: int) -> None:
    """Apply a completed order to the customer's loyalty totals"""
    now = datetime.utcnow()
    customer.loyalty_points = (customer.loyalty_points or 0) + points
    customer.total_spent = round((customer.total_spent or 0) + (amount or 0), 2)
    customer.visit_count = (customer.visit_count or 0) + 1
    if customer.first_visit_date is None:
        customer.first_visit_date = now
    customer.last_visit_date = now


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


async def get_customer(db: AsyncSession, tenant_id: int, customer_id: int) -> Customer:
    result = await db.execute(
        select(Customer).where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
    )
    customer = result.scalar_one_or_none()
    if not customer:
        raise CustomerNotFound()
    return customer


async def _find_by_phone(db: AsyncSession, tenant_id: int, phone: str) -> Optional[Customer]:
    result = await db.execute(
        select(Customer).where(Customer.tenant_id == tenant_id, Customer.phone == phone)
    )
    return result.scalar_one_or_none()


async def _create_customer(db: AsyncSession, tenant_id: int, data) -> Customer:
    phone = _clean(data.phone)
    if phone and await _find_by_phone(db, tenant_id, phone):
        raise DuplicateCustomer()

    customer = Customer(
        tenant_id=tenant_id,
        name=data.name.strip(),
        email=_clean(data.email),
        phone=phone,
        address=_clean(data.address),
        date_of_birth=data.date_of_birth,
        notes=_clean(data.notes),
    )
    db.add(customer)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateCustomer()
    await db.refresh(customer)

    await metrics_service.increment_customer(tenant_id, is_new=True)
    return customer


# =============================================================================
# PUBLIC CUSTOMER PORTAL
# =============================================================================

async def _resolve_public_cafe(db: AsyncSession, cafe_slug: Optional[str]) -> Tenant:
    if not cafe_slug or not cafe_slug.strip():
        raise CafeIdRequired()
    return await get_tenant_by_slug(db, cafe_slug)


@public_router.get("/login/{phone}", response_model=CustomerResponse)
@limiter.shared_limit(AUTH_LIMIT, scope=AUTH_SCOPE)
async def customer_login(
    request: Request,
    phone: str,
    cafe_slug: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """Look a customer up by phone within one cafe"""
    tenant = await _resolve_public_cafe(db, cafe_slug)
    customer = await _find_by_phone(db, tenant.id, phone.strip())
    if not customer or not customer.is_active:
        raise CustomerNotFound()
    return customer


@public_router.post("/register", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
@limiter.shared_limit(AUTH_LIMIT, scope=AUTH_SCOPE)
async def customer_register(
    request: Request,
    customer_data: CustomerRegister,
    db: AsyncSession = Depends(get_db)
):
    tenant = await _resolve_public_cafe(db, customer_data.cafe_slug)
    customer = await _create_customer(db, tenant.id, customer_data)
    logger.info(f"Customer {customer.id} self-registered at cafe {tenant.slug}")
    return customer


# =============================================================================
# CAFE CUSTOMER DIRECTORY
# =============================================================================

@router.get("", response_model=List[CustomerResponse])
async def list_customers(
    include_inactive: bool = False,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    query = select(Customer).where(Customer.tenant_id == tenant.id)
    if not include_inactive:
        query = query.where(Customer.is_active == True)
    result = await db.execute(query.order_by(Customer.name))
    return result.scalars().all()


@router.get("/search", response_model=List[CustomerResponse])
async def search_customers(
    q: str = Query(..., min_length=1),
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    """Match name, email or phone (case-insensitive substring)"""
    pattern = f"%{q.strip()}%"
    result = await db.execute(
        select(Customer)
        .where(
            Customer.tenant_id == tenant.id,
            or_(
                Customer.name.ilike(pattern),
                Customer.email.ilike(pattern),
                Customer.phone.ilike(pattern),
            )
        )
        .order_by(Customer.name)
        .limit(50)
    )
    return result.scalars().all()


@router.get("/statistics")
async def customer_statistics(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(
            func.count(Customer.id),
            func.coalesce(func.sum(Customer.loyalty_points), 0),
            func.coalesce(func.sum(Customer.total_spent), 0.0),
            func.coalesce(func.avg(Customer.total_spent), 0.0),
            func.coalesce(func.avg(Customer.visit_count), 0.0),
        ).where(Customer.tenant_id == tenant.id, Customer.is_active == True)
    )
    total, points, spent, avg_spent, avg_visits = result.one()

    top = await db.execute(
        select(Customer)
        .where(Customer.tenant_id == tenant.id, Customer.is_active == True)
        .order_by(desc(Customer.total_spent))
        .limit(5)
    )

    return {
        "total_customers": int(total),
        "total_loyalty_points": int(points),
        "total_spent": round(float(spent), 2),
        "average_spent": round(float(avg_spent), 2),
        "average_visits": round(float(avg_visits), 2),
        "top_customers": [CustomerResponse.model_validate(c) for c in top.scalars().all()],
    }


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await _create_customer(db, tenant.id, customer_data)


@router.get("/{customer_id}", response_model=CustomerResponse)
async def read_customer(
    customer_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await get_customer(db, tenant.id, customer_id)


@router.put("/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: int,
    customer_data: CustomerUpdate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    customer = await get_customer(db, tenant.id, customer_id)

    phone = _clean(customer_data.phone)
    if phone and phone != customer.phone:
        existing = await _find_by_phone(db, tenant.id, phone)
        if existing and existing.id != customer.id:
            raise DuplicateCustomer()

    customer.name = customer_data.name.strip()
    customer.email = _clean(customer_data.email)
    customer.phone = phone
    customer.address = _clean(customer_data.address)
    customer.date_of_birth = customer_data.date_of_birth
    customer.notes = _clean(customer_data.notes)
    if customer_data.is_active is not None:
        customer.is_active = customer_data.is_active

    await db.commit()
    await db.refresh(customer)
    return customer


@router.get("/{customer_id}/orders", response_model=List[OrderResponse])
async def customer_orders(
    customer_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    await get_customer(db, tenant.id, customer_id)
    result = await db.execute(
        select(Order)
        .where(Order.tenant_id == tenant.id, Order.customer_id == customer_id)
        .order_by(desc(Order.created_at))
    )
    return result.scalars().all()


@router.post("/{customer_id}/redeem-points", response_model=CustomerResponse)
async def redeem_points(
    customer_id: int,
    redeem: RedeemPointsRequest,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    customer = await get_customer(db, tenant.id, customer_id)
    if (customer.loyalty_points or 0) < redeem.points:
        raise InsufficientPoints(available=customer.loyalty_points or 0, requested=redeem.points)

    customer.loyalty_points -= redeem.points
    await db.commit()
    await db.refresh(customer)
    logger.info(f"Customer {customer.id} redeemed {redeem.points} points at cafe {tenant.slug}")
    return customer
