"""
Order and invoice routes (features: orders, invoices).

Order numbers look like ORD-20240310-7F3A and invoice numbers INV-20240310-7F3A.
Totals are computed server side from menu prices and the cafe's tax settings.
Loyalty points and completion metrics are applied once, the first time an
order reaches `completed`.
"""

import logging
import secrets
from datetime import datetime, date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import metrics_service
from auth import get_current_user
from customers_api import get_customer, calculate_points, record_visit, POINT_VALUE
from database import get_db
from errors import NotFound, Conflict, ValidationFailed, InsufficientPoints
from models import Order, OrderItem, OrderStatus, Invoice, MenuItem, Customer, Tenant, User
from permissions import Permission, get_tenant_settings, default_settings_values
from schemas import (
    OrderCreate, OrderUpdate, OrderStatusUpdate, OrderResponse,
    InvoiceCreate, InvoiceResponse
)
from subscription_middleware import require_membership, require_feature, require_permission, require_onboarded
from timezone_utils import business_day_bounds

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cafes/{slug}/orders",
    tags=["Orders"],
    dependencies=[Depends(require_feature("orders"))]
)

invoices_router = APIRouter(
    prefix="/api/cafes/{slug}/invoices",
    tags=["Invoices"],
    dependencies=[Depends(require_feature("invoices"))]
)

can_create_orders = Depends(require_permission(Permission.CREATE_ORDERS))
can_edit_orders = Depends(require_permission(Permission.EDIT_ORDERS))

TERMINAL_STATUSES = {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value}
NUMBER_ATTEMPTS = 5


class OrderNotFound(NotFound):
    code = "ORDER_NOT_FOUND"
    message = "Order not found"


class InvoiceNotFound(NotFound):
    code = "INVOICE_NOT_FOUND"
    message = "Invoice not found"


def generate_number(prefix: str, when: Optional[datetime] = None) -> str:
    when = when or datetime.utcnow()
    return f"{prefix}-{when.strftime('%Y%m%d')}-{secrets.token_hex(2).upper()}"


async def get_order(db: AsyncSession, tenant_id: int, order_id: int) -> Order:
    result = await db.execute(
        select(Order).where(Order.id == order_id, Order.tenant_id == tenant_id)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise OrderNotFound()
    return order


async def _build_lines(db: AsyncSession, tenant_id: int, order_data: OrderCreate) -> List[dict]:
    """Price each requested line from the menu (or the custom price given)"""
    menu_ids = {item.menu_item_id for item in order_data.items if item.menu_item_id is not None}
    menu = {}
    if menu_ids:
        result = await db.execute(
            select(MenuItem).where(MenuItem.tenant_id == tenant_id, MenuItem.id.in_(menu_ids))
        )
        menu = {item.id: item for item in result.scalars().all()}

    lines = []
    for line in order_data.items:
        if line.menu_item_id is not None:
            menu_item = menu.get(line.menu_item_id)
            if menu_item is None:
                raise NotFound(f"Menu item {line.menu_item_id} not found", code="MENU_ITEM_NOT_FOUND")
            if not menu_item.is_available:
                raise ValidationFailed(f"'{menu_item.name}' is not available", code="ITEM_UNAVAILABLE")
            name, price = menu_item.name, menu_item.price
        else:
            if not line.item_name or line.price is None:
                raise ValidationFailed("Custom items need item_name and price")
            name, price = line.item_name.strip(), line.price

        lines.append({
            "menu_item_id": line.menu_item_id,
            "item_name": name,
            "quantity": line.quantity,
            "price": price,
            "total": round(price * line.quantity, 2),
        })
    return lines


async def _resolve_customer(db: AsyncSession, tenant_id: int, order_data: OrderCreate) -> Optional[Customer]:
    if order_data.customer_id is not None:
        return await get_customer(db, tenant_id, order_data.customer_id)
    if order_data.customer_phone:
        result = await db.execute(
            select(Customer).where(Customer.tenant_id == tenant_id, Customer.phone == order_data.customer_phone.strip())
        )
        return result.scalar_one_or_none()
    return None


def redemption_value(order_data: OrderCreate, customer: Optional[Customer]) -> float:
    """Currency value of the points redeemed on this order"""
    if not order_data.points_redeemed:
        return 0.0
    if customer is None:
        raise ValidationFailed("Redeeming points needs a customer", code="CUSTOMER_REQUIRED")
    available = customer.loyalty_points or 0
    if available < order_data.points_redeemed:
        raise InsufficientPoints(available=available, requested=order_data.points_redeemed)
    return round(order_data.points_redeemed * POINT_VALUE, 2)


def split_payment_fields(order_data: OrderCreate, total_amount: float) -> dict:
    """
    Validate the second payment of a split bill.

    `split_amount` is the part paid with `split_payment_method`; the rest of the
    total goes to the order's main payment method.
    """
    if not order_data.split_payment:
        return {"split_payment": False, "split_payment_method": None, "split_amount": 0.0}
    if not order_data.split_payment_method:
        raise ValidationFailed("Split payments need a second payment method", code="INVALID_SPLIT_PAYMENT")
    if not 0 < order_data.split_amount <= total_amount:
        raise ValidationFailed(
            "Split amount must be positive and no more than the order total",
            code="INVALID_SPLIT_PAYMENT",
            total_amount=total_amount
        )
    return {
        "split_payment": True,
        "split_payment_method": order_data.split_payment_method,
        "split_amount": round(order_data.split_amount, 2),
    }


# =============================================================================
# ORDERS
# =============================================================================

@router.get("", response_model=List[OrderResponse])
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    customer_phone: Optional[str] = None,
    order_number: Optional[str] = None,
    day: Optional[date] = Query(None, alias="date"),
    limit: int = Query(100, ge=1, le=500),
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    query = select(Order).where(Order.tenant_id == tenant.id)
    if status_filter:
        query = query.where(Order.status == status_filter.value)
    if customer_phone:
        query = query.where(Order.customer_phone == customer_phone)
    if order_number:
        query = query.where(Order.order_number == order_number)
    if day:
        start, end = business_day_bounds(day)
        query = query.where(Order.created_at >= start, Order.created_at < end)
    result = await db.execute(query.order_by(desc(Order.created_at)).limit(limit))
    return result.scalars().all()


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[can_create_orders, Depends(require_onboarded)]
)
async def create_order(
    order_data: OrderCreate,
    tenant: Tenant = Depends(require_membership),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    lines = await _build_lines(db, tenant.id, order_data)
    customer = await _resolve_customer(db, tenant.id, order_data)

    settings_row = await get_tenant_settings(db, tenant.id)
    values = settings_row.snapshot() if settings_row else default_settings_values()

    subtotal = round(sum(line["total"] for line in lines), 2)
    tax_amount = round(subtotal * (values["tax_rate"] or 0) / 100, 2) if values["include_tax"] else 0.0
    total_amount = round(
        subtotal + tax_amount + order_data.tip_amount + order_data.extra_charge - redemption_value(order_data, customer),
        2
    )
    if total_amount < 0:
        raise ValidationFailed("Redeemed points exceed the order total", code="REDEMPTION_EXCEEDS_TOTAL")
    split = split_payment_fields(order_data, total_amount)

    # Plain values: a rollback below expires every loaded instance
    tenant_id, slug, user_id = tenant.id, tenant.slug, current_user.id
    customer_id = customer.id if customer else None
    fields = dict(
        tenant_id=tenant_id,
        customer_id=customer_id,
        customer_name=order_data.customer_name or (customer.name if customer else None),
        customer_phone=order_data.customer_phone or (customer.phone if customer else None),
        table_number=order_data.table_number,
        payment_method=order_data.payment_method,
        subtotal=subtotal,
        tax_amount=tax_amount,
        tip_amount=order_data.tip_amount,
        extra_charge=order_data.extra_charge,
        extra_charge_note=order_data.extra_charge_note if order_data.extra_charge else None,
        points_redeemed=order_data.points_redeemed,
        total_amount=total_amount,
        notes=order_data.notes,
        created_by=user_id,
        **split
    )

    for attempt in range(NUMBER_ATTEMPTS):
        if order_data.points_redeemed:
            # Redeemed points leave the balance at checkout, earned ones on completion
            redeeming = await db.get(Customer, customer_id, populate_existing=True)
            redeeming.loyalty_points -= order_data.points_redeemed
        order = Order(
            order_number=generate_number("ORD"),
            items=[OrderItem(**line) for line in lines],
            **fields
        )
        db.add(order)
        try:
            await db.commit()
            break
        except IntegrityError:
            await db.rollback()
            logger.warning(f"Order number collision on attempt {attempt + 1} for cafe {tenant_id}")
    else:
        raise Conflict("Could not allocate an order number", code="ORDER_NUMBER_CONFLICT")

    await db.refresh(order)
    await metrics_service.increment_order(tenant_id, order.total_amount, when=order.created_at)

    logger.info(f"Order {order.order_number} created at cafe {slug} by user {user_id}")
    return order


@router.get("/{order_id}", response_model=OrderResponse)
async def read_order(
    order_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await get_order(db, tenant.id, order_id)


@router.put("/{order_id}", response_model=OrderResponse, dependencies=[can_edit_orders])
async def update_order(
    order_id: int,
    order_data: OrderUpdate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    order = await get_order(db, tenant.id, order_id)
    for field, value in order_data.model_dump(exclude_unset=True).items():
        setattr(order, field, value)
    await db.commit()
    await db.refresh(order)
    return order


@router.patch("/{order_id}/status", dependencies=[can_edit_orders])
async def update_order_status(
    order_id: int,
    status_update: OrderStatusUpdate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    order = await get_order(db, tenant.id, order_id)
    new_status = status_update.status.value

    if order.status in TERMINAL_STATUSES and new_status != order.status:
        raise ValidationFailed(
            f"Order is already {order.status}",
            code="INVALID_STATUS_TRANSITION",
            current_status=order.status
        )

    first_completion = new_status == OrderStatus.COMPLETED.value and order.completed_at is None
    order.status = new_status

    loyalty_update = None
    if first_completion:
        order.completed_at = datetime.utcnow()
        if order.customer_id:
            customer = await db.get(Customer, order.customer_id)
            if customer:
                points = calculate_points(order.total_amount)
                record_visit(customer, order.total_amount, points)
                order.points_awarded = points
                loyalty_update = {"pointsEarned": points, "newTotalPoints": customer.loyalty_points}

    await db.commit()
    await db.refresh(order)

    if first_completion:
        await metrics_service.update_order_completion(tenant.id, order.total_amount, when=order.created_at)
        if loyalty_update:
            logger.info(f"Awarded {loyalty_update['pointsEarned']} points to customer {order.customer_id}")

    response = OrderResponse.model_validate(order).model_dump()
    response["loyaltyUpdate"] = loyalty_update
    return response


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_edit_orders])
async def delete_order(
    order_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    order = await get_order(db, tenant.id, order_id)
    amount, created_at = order.total_amount, order.created_at
    was_completed = order.completed_at is not None
    await db.delete(order)
    await db.commit()
    await metrics_service.decrement_order(tenant.id, amount, when=created_at, was_completed=was_completed)


# =============================================================================
# INVOICES
# =============================================================================

@invoices_router.get("", response_model=List[InvoiceResponse])
async def list_invoices(
    limit: int = Query(100, ge=1, le=500),
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(Invoice).where(Invoice.tenant_id == tenant.id).order_by(desc(Invoice.invoice_date)).limit(limit)
    )
    return result.scalars().all()


@invoices_router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED, dependencies=[can_create_orders])
async def create_invoice(
    invoice_data: InvoiceCreate,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    order = await get_order(db, tenant.id, invoice_data.order_id)

    result = await db.execute(select(Invoice.id).where(Invoice.order_id == order.id))
    if result.scalar_one_or_none() is not None:
        raise Conflict("An invoice already exists for this order", code="DUPLICATE_INVOICE")

    order_id = order.id
    fields = dict(
        tenant_id=tenant.id,
        order_id=order_id,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        subtotal=order.subtotal,
        tax_amount=order.tax_amount,
        tip_amount=order.tip_amount,
        total_amount=order.total_amount,
        payment_method=order.payment_method,
    )

    for attempt in range(NUMBER_ATTEMPTS):
        invoice = Invoice(invoice_number=generate_number("INV"), **fields)
        db.add(invoice)
        try:
            await db.commit()
            break
        except IntegrityError:
            await db.rollback()
            result = await db.execute(select(Invoice.id).where(Invoice.order_id == order_id))
            if result.scalar_one_or_none() is not None:
                raise Conflict("An invoice already exists for this order", code="DUPLICATE_INVOICE")
    else:
        raise Conflict("Could not allocate an invoice number", code="INVOICE_NUMBER_CONFLICT")

    await db.refresh(invoice)
    return invoice


@invoices_router.get("/{invoice_number}", response_model=InvoiceResponse)
async def read_invoice(
    invoice_number: str,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(Invoice).where(Invoice.tenant_id == tenant.id, Invoice.invoice_number == invoice_number)
    )
    invoice = result.scalar_one_or_none()
    if not invoice:
        raise InvoiceNotFound()
    return invoice
