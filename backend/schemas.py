from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Any
from datetime import datetime, date
from models import UserRole, OrderStatus


# Auth Schemas
class LoginRequest(BaseModel):
    """Either email or username identifies the account"""
    email: Optional[str] = None
    username: Optional[str] = None
    password: str


class UserResponse(BaseModel):
    id: int
    tenant_id: Optional[int] = None
    email: str
    username: str
    full_name: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    token: str
    user: UserResponse


# User Schemas
class UserCreate(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50)
    password: str
    full_name: Optional[str] = None
    role: UserRole = UserRole.USER


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    password: Optional[str] = None


# Cafe (tenant) Schemas
class CafeCreate(BaseModel):
    """Super admin: create a cafe together with its first admin"""
    name: str = Field(..., min_length=1, max_length=100)
    slug: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    admin_email: EmailStr
    admin_username: str = Field(..., min_length=3, max_length=50)
    admin_password: str
    admin_full_name: Optional[str] = None


class CafeUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    logo_url: Optional[str] = None
    is_active: Optional[bool] = None


class CafeResponse(BaseModel):
    id: int
    slug: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    logo_url: Optional[str] = None
    subscription_plan: Optional[str] = None
    subscription_status: Optional[str] = None
    is_onboarded: bool
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SubscriptionUpdate(BaseModel):
    plan: Optional[str] = None
    status: Optional[str] = None


class FeatureOverrideRequest(BaseModel):
    enabled: Any


class FeatureResponse(BaseModel):
    id: int
    key: str
    name: str
    description: Optional[str] = None
    default_free: bool
    default_pro: bool

    class Config:
        from_attributes = True


class OnboardingRequest(BaseModel):
    cafe_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    currency: Optional[str] = None
    tax_rate: Optional[float] = Field(None, ge=0, le=100)
    data: Optional[dict] = None


class TaxSettingsUpdate(BaseModel):
    tax_rate: float = Field(..., ge=0, le=100)
    tax_name: Optional[str] = Field(None, min_length=1, max_length=50)
    include_tax: Optional[bool] = None


# Audit Schemas
class SubscriptionAuditResponse(BaseModel):
    id: int
    tenant_id: int
    action_type: str
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    feature_key: Optional[str] = None
    changed_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ImpersonationAuditResponse(BaseModel):
    id: int
    super_admin_id: Optional[int] = None
    super_admin_email: str
    cafe_id: int
    cafe_slug: str
    cafe_name: str
    action_type: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Customer Schemas
class CustomerBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    notes: Optional[str] = None


class CustomerCreate(CustomerBase):
    pass


class CustomerRegister(CustomerBase):
    """Public self-registration; phone is required and the cafe is named by slug"""
    phone: str = Field(..., min_length=1, max_length=20)
    cafe_slug: Optional[str] = None


class CustomerUpdate(CustomerBase):
    is_active: Optional[bool] = None


class CustomerResponse(BaseModel):
    id: int
    tenant_id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    notes: Optional[str] = None
    loyalty_points: int
    total_spent: float
    visit_count: int
    first_visit_date: Optional[datetime] = None
    last_visit_date: Optional[datetime] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RedeemPointsRequest(BaseModel):
    points: int = Field(..., gt=0)


# Menu Schemas
class MenuItemBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    category: Optional[str] = None
    price: float = Field(..., ge=0)
    is_available: bool = True
    featured_priority: Optional[int] = None
    sort_order: int = 0


class MenuItemCreate(MenuItemBase):
    pass


class MenuItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    is_available: Optional[bool] = None
    featured_priority: Optional[int] = None
    sort_order: Optional[int] = None


class MenuItemResponse(MenuItemBase):
    id: int
    tenant_id: int
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Category Schemas
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    sort_order: int = 0


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryResponse(BaseModel):
    id: int
    tenant_id: int
    name: str
    description: Optional[str] = None
    sort_order: int
    is_active: bool

    class Config:
        from_attributes = True


class CategoryWithCount(CategoryResponse):
    item_count: int = 0


# Inventory Schemas
class InventoryItemBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: Optional[str] = None
    quantity: float = Field(0.0, ge=0)
    unit: Optional[str] = None
    cost_per_unit: float = Field(0.0, ge=0)
    reorder_level: float = Field(0.0, ge=0)
    supplier: Optional[str] = None
    notes: Optional[str] = None


class InventoryItemCreate(InventoryItemBase):
    pass


class InventoryItemUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None
    cost_per_unit: Optional[float] = Field(None, ge=0)
    reorder_level: Optional[float] = Field(None, ge=0)
    supplier: Optional[str] = None
    notes: Optional[str] = None


class StockAdjustment(BaseModel):
    """Positive adds stock, negative removes it"""
    delta: float


class InventoryItemResponse(InventoryItemBase):
    id: int
    tenant_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CsvImportResult(BaseModel):
    created: int
    updated: int
    errors: List[str] = []


# Order Schemas
class OrderItemCreate(BaseModel):
    menu_item_id: Optional[int] = None
    item_name: Optional[str] = None
    quantity: int = Field(..., gt=0)
    price: Optional[float] = Field(None, ge=0)


class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1)
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    table_number: Optional[str] = None
    payment_method: Optional[str] = None
    tip_amount: float = Field(0.0, ge=0)
    extra_charge: float = Field(0.0, ge=0)
    extra_charge_note: Optional[str] = Field(None, max_length=255)
    points_redeemed: int = Field(0, ge=0)
    split_payment: bool = False
    split_payment_method: Optional[str] = None
    split_amount: float = Field(0.0, ge=0)
    notes: Optional[str] = None


class OrderUpdate(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    table_number: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderItemResponse(BaseModel):
    id: int
    menu_item_id: Optional[int] = None
    item_name: str
    quantity: int
    price: float
    total: float

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    tenant_id: int
    order_number: str
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    table_number: Optional[str] = None
    status: str
    payment_method: Optional[str] = None
    subtotal: float
    tax_amount: float
    tip_amount: float
    extra_charge: float = 0.0
    extra_charge_note: Optional[str] = None
    points_redeemed: int = 0
    total_amount: float
    points_awarded: int
    split_payment: bool = False
    split_payment_method: Optional[str] = None
    split_amount: float = 0.0
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class InvoiceCreate(BaseModel):
    order_id: int


class InvoiceResponse(BaseModel):
    id: int
    tenant_id: int
    order_id: int
    invoice_number: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    subtotal: float
    tax_amount: float
    tip_amount: float
    total_amount: float
    payment_method: Optional[str] = None
    invoice_date: datetime

    class Config:
        from_attributes = True


# Payment Method Schemas
class PaymentMethodCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    code: str = Field(..., min_length=1, max_length=30)
    description: Optional[str] = None
    icon: Optional[str] = None
    display_order: Optional[int] = None
    is_active: bool = True


class PaymentMethodUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


class PaymentMethodResponse(BaseModel):
    id: int
    tenant_id: int
    name: str
    code: str
    description: Optional[str] = None
    icon: Optional[str] = None
    display_order: int
    is_active: bool

    class Config:
        from_attributes = True


class PaymentMethodReorder(BaseModel):
    """Ids in the desired display order; position i gets display_order i + 1"""
    ids: List[int] = Field(..., min_length=1)


# Analytics Schemas
class DailyMetricsResponse(BaseModel):
    date: date
    total_orders: int
    total_revenue: float
    completed_orders: int
    completed_revenue: float
    total_customers: int
    new_customers: int

    class Config:
        from_attributes = True


class TopItem(BaseModel):
    item_name: str
    quantity: int
    revenue: float
