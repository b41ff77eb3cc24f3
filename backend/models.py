from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Boolean, Text, JSON, UniqueConstraint, Index, Date
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from database import Base


class UserRole(str, enum.Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    USER = "user"
    CHEF = "chef"
    RECEPTION = "reception"


class SubscriptionPlan(str, enum.Enum):
    FREE = "FREE"
    PRO = "PRO"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SubscriptionAuditAction(str, enum.Enum):
    PLAN_CHANGED = "PLAN_CHANGED"
    FEATURE_ENABLED = "FEATURE_ENABLED"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    CAFE_ACTIVATED = "CAFE_ACTIVATED"
    CAFE_DEACTIVATED = "CAFE_DEACTIVATED"


class ImpersonationAction(str, enum.Enum):
    STARTED = "IMPERSONATION_STARTED"
    ENDED = "IMPERSONATION_ENDED"


class Tenant(Base):
    """A cafe: the isolation scope for users, menu, orders and customers"""
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)

    # Contact Information
    email = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    logo_url = Column(String(255), nullable=True)

    # Subscription (plain strings; resolver normalizes legacy values)
    subscription_plan = Column(String(20), default=SubscriptionPlan.FREE.value, nullable=True)
    subscription_status = Column(String(20), default=SubscriptionStatus.ACTIVE.value, nullable=True)

    # Onboarding
    is_onboarded = Column(Boolean, default=False, nullable=False)
    onboarding_data = Column(JSON, nullable=True)

    # Soft delete
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    settings = relationship("TenantSettings", back_populates="tenant", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}', plan='{self.subscription_plan}')>"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True)
    email = Column(String(100), unique=True, nullable=False, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(100), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.USER.value)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="users")

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPERADMIN.value

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role='{self.role}')>"


class Feature(Base):
    """Global feature catalog; rows are seeded by migration"""
    __tablename__ = "features"

    id = Column(Integer, primary_key=True)
    key = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    default_free = Column(Boolean, default=False, nullable=False)
    default_pro = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Feature(key='{self.key}', free={self.default_free}, pro={self.default_pro})>"


class TenantFeatureOverride(Base):
    __tablename__ = "tenant_feature_overrides"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    feature_key = Column(String(50), ForeignKey("features.key", ondelete="CASCADE"), nullable=False)
    enabled = Column(Boolean, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "feature_key", name="uq_tenant_feature"),
        Index("idx_overrides_tenant", "tenant_id"),
    )


class SettingsColumnsMixin:
    """Column set shared by tenant_settings and its history shadow table"""

    # Global tab visibility
    show_kitchen_tab = Column(Boolean, default=True, nullable=False)
    show_customers_tab = Column(Boolean, default=True, nullable=False)
    show_payment_methods_tab = Column(Boolean, default=True, nullable=False)
    show_menu_tab = Column(Boolean, default=True, nullable=False)
    show_inventory_tab = Column(Boolean, default=True, nullable=False)
    show_history_tab = Column(Boolean, default=True, nullable=False)
    show_menu_images = Column(Boolean, default=True, nullable=False)

    # Chef
    chef_show_kitchen_tab = Column(Boolean, default=True, nullable=False)
    chef_show_menu_tab = Column(Boolean, default=False, nullable=False)
    chef_show_inventory_tab = Column(Boolean, default=False, nullable=False)
    chef_show_history_tab = Column(Boolean, default=True, nullable=False)
    chef_can_edit_orders = Column(Boolean, default=True, nullable=False)
    chef_can_view_customers = Column(Boolean, default=False, nullable=False)
    chef_can_view_payments = Column(Boolean, default=False, nullable=False)

    # Reception
    reception_show_kitchen_tab = Column(Boolean, default=True, nullable=False)
    reception_show_menu_tab = Column(Boolean, default=False, nullable=False)
    reception_show_inventory_tab = Column(Boolean, default=False, nullable=False)
    reception_show_history_tab = Column(Boolean, default=True, nullable=False)
    reception_can_edit_orders = Column(Boolean, default=True, nullable=False)
    reception_can_view_customers = Column(Boolean, default=True, nullable=False)
    reception_can_view_payments = Column(Boolean, default=True, nullable=False)
    reception_can_create_orders = Column(Boolean, default=True, nullable=False)

    # Admin
    admin_can_access_settings = Column(Boolean, default=False, nullable=False)
    admin_can_manage_users = Column(Boolean, default=False, nullable=False)
    admin_can_view_reports = Column(Boolean, default=True, nullable=False)
    admin_can_manage_inventory = Column(Boolean, default=True, nullable=False)
    admin_can_manage_menu = Column(Boolean, default=True, nullable=False)

    # Business details
    cafe_name = Column(String(100), nullable=True)
    address = Column(Text, nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(100), nullable=True)
    website = Column(String(255), nullable=True)
    currency = Column(String(10), default="INR", nullable=False)
    tax_rate = Column(Float, default=0.0, nullable=False)
    tax_name = Column(String(50), default="Tax", nullable=False)
    include_tax = Column(Boolean, default=True, nullable=False)

    # Thermal printer
    enable_thermal_printer = Column(Boolean, default=False, nullable=False)
    default_printer_type = Column(String(20), default="system", nullable=False)
    printer_name = Column(String(100), nullable=True)
    printer_port = Column(String(100), nullable=True)
    printer_baud_rate = Column(Integer, default=9600, nullable=False)
    auto_print_new_orders = Column(Boolean, default=False, nullable=False)
    print_order_copies = Column(Integer, default=1, nullable=False)

    # Branding
    color_scheme = Column(String(20), default="default", nullable=False)
    primary_color = Column(String(7), default="#75826b", nullable=False)
    secondary_color = Column(String(7), default="#153059", nullable=False)
    accent_color = Column(String(7), default="#e0a066", nullable=False)
    logo_url = Column(String(255), nullable=True)


SETTINGS_FIELDS = tuple(
    name for name, value in vars(SettingsColumnsMixin).items() if isinstance(value, Column)
)


class TenantSettings(SettingsColumnsMixin, Base):
    __tablename__ = "tenant_settings"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), unique=True, nullable=False)
    updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="settings")

    def snapshot(self) -> dict:
        return {field: getattr(self, field) for field in SETTINGS_FIELDS}


class TenantSettingsHistory(SettingsColumnsMixin, Base):
    """Append-only copy of every saved settings row"""
    __tablename__ = "tenant_settings_history"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    changed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    loyalty_points = Column(Integer, default=0, nullable=False)
    total_spent = Column(Float, default=0.0, nullable=False)
    visit_count = Column(Integer, default=0, nullable=False)
    first_visit_date = Column(DateTime, nullable=True)
    last_visit_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "phone", name="uq_customer_tenant_phone"),
        Index("idx_customers_tenant_email", "tenant_id", "email"),
    )


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=True)
    price = Column(Float, nullable=False)
    image_url = Column(String(255), nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)
    featured_priority = Column(Integer, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_category_tenant_name"),
    )


class InventoryItem(Base):
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    category = Column(String(50), nullable=True)
    quantity = Column(Float, default=0.0, nullable=False)
    unit = Column(String(20), nullable=True)
    cost_per_unit = Column(Float, default=0.0, nullable=False)
    reorder_level = Column(Float, default=0.0, nullable=False)
    supplier = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    order_number = Column(String(30), unique=True, nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    table_number = Column(String(20), nullable=True)
    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False)
    payment_method = Column(String(50), nullable=True)
    subtotal = Column(Float, default=0.0, nullable=False)
    tax_amount = Column(Float, default=0.0, nullable=False)
    tip_amount = Column(Float, default=0.0, nullable=False)
    extra_charge = Column(Float, default=0.0, nullable=False)
    extra_charge_note = Column(String(255), nullable=True)
    points_redeemed = Column(Integer, default=0, nullable=False)
    total_amount = Column(Float, default=0.0, nullable=False)
    points_awarded = Column(Integer, default=0, nullable=False)
    split_payment = Column(Boolean, default=False, nullable=False)
    split_payment_method = Column(String(50), nullable=True)
    split_amount = Column(Float, default=0.0, nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")

    __table_args__ = (
        Index("idx_orders_tenant_created", "tenant_id", "created_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id", ondelete="SET NULL"), nullable=True)
    item_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    total = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)
    invoice_number = Column(String(30), unique=True, nullable=False)
    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    subtotal = Column(Float, default=0.0, nullable=False)
    tax_amount = Column(Float, default=0.0, nullable=False)
    tip_amount = Column(Float, default=0.0, nullable=False)
    total_amount = Column(Float, default=0.0, nullable=False)
    payment_method = Column(String(50), nullable=True)
    invoice_date = Column(DateTime, default=datetime.utcnow, nullable=False)


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    code = Column(String(30), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(50), nullable=True)
    display_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_payment_method_tenant_code"),
    )


class CafeDailyMetrics(Base):
    __tablename__ = "cafe_daily_metrics"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    total_orders = Column(Integer, default=0, nullable=False)
    total_revenue = Column(Float, default=0.0, nullable=False)
    completed_orders = Column(Integer, default=0, nullable=False)
    completed_revenue = Column(Float, default=0.0, nullable=False)
    total_customers = Column(Integer, default=0, nullable=False)
    new_customers = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "date", name="uq_daily_metrics_tenant_date"),
    )


class SubscriptionAuditLog(Base):
    __tablename__ = "subscription_audit_log"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    action_type = Column(String(30), nullable=False, index=True)
    previous_value = Column(String(50), nullable=True)
    new_value = Column(String(50), nullable=True)
    feature_key = Column(String(50), nullable=True)
    changed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class ImpersonationAuditLog(Base):
    __tablename__ = "impersonation_audit_log"

    id = Column(Integer, primary_key=True)
    super_admin_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    super_admin_email = Column(String(100), nullable=False)
    cafe_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    cafe_slug = Column(String(64), nullable=False)
    cafe_name = Column(String(100), nullable=False)
    action_type = Column(String(30), nullable=False)
    ip_address = Column(String(50), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class SchemaMigration(Base):
    """Registry of executed migrations"""
    __tablename__ = "schema_migrations"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    executed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
