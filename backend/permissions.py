"""
Role/permission resolution.

Maps a role inside a cafe to the UI tabs it sees and the actions it may take,
using the cafe's settings row (`<role>_show_<tab>_tab`, `<role>_can_<action>`).
"""

import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from feature_service import to_bool
from models import TenantSettings, UserRole, SettingsColumnsMixin, SETTINGS_FIELDS


class Tab(str, enum.Enum):
    KITCHEN = "kitchen"
    CUSTOMERS = "customers"
    PAYMENT_METHODS = "payment_methods"
    MENU = "menu"
    INVENTORY = "inventory"
    HISTORY = "history"


class Permission(str, enum.Enum):
    ACCESS_SETTINGS = "access_settings"
    MANAGE_USERS = "manage_users"
    VIEW_REPORTS = "view_reports"
    MANAGE_INVENTORY = "manage_inventory"
    MANAGE_MENU = "manage_menu"
    EDIT_ORDERS = "edit_orders"
    CREATE_ORDERS = "create_orders"
    VIEW_CUSTOMERS = "view_customers"
    VIEW_PAYMENTS = "view_payments"


ALL_TABS = frozenset(Tab)
ALL_PERMISSIONS = frozenset(Permission)

# Configurable per cafe through admin_can_<action>
ADMIN_CONFIGURABLE = (
    Permission.ACCESS_SETTINGS,
    Permission.MANAGE_USERS,
    Permission.VIEW_REPORTS,
    Permission.MANAGE_INVENTORY,
    Permission.MANAGE_MENU,
)

# Always granted to cafe admins
ADMIN_OPERATIONAL = (
    Permission.EDIT_ORDERS,
    Permission.CREATE_ORDERS,
    Permission.VIEW_CUSTOMERS,
    Permission.VIEW_PAYMENTS,
)

# Tabs chef/reception visibility is stored for
STAFF_TABS = (Tab.KITCHEN, Tab.MENU, Tab.INVENTORY, Tab.HISTORY)


@dataclass(frozen=True)
class RoleView:
    role: str
    visible_tabs: FrozenSet[Tab] = field(default_factory=frozenset)
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)

    def can(self, permission: Permission) -> bool:
        return permission in self.permissions

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "visibleTabs": sorted(tab.value for tab in self.visible_tabs),
            "permissions": sorted(p.value for p in self.permissions),
        }


def default_settings_values() -> dict:
    """Column defaults of a freshly seeded settings row"""
    values = {}
    for name in SETTINGS_FIELDS:
        column = getattr(SettingsColumnsMixin, name)
        values[name] = column.default.arg if column.default is not None else None
    return values


def _flag(values: dict, column: str) -> bool:
    return to_bool(values.get(column))


def _globally_shown(values: dict) -> FrozenSet[Tab]:
    return frozenset(tab for tab in Tab if _flag(values, f"show_{tab.value}_tab"))


def resolve_role_view(settings_row: Optional[TenantSettings], role: str) -> RoleView:
    """
    Visible tabs and permissions for `role` under a cafe's settings.

    A missing settings row resolves against the seeded defaults.
    Super admins bypass settings entirely.
    """
    if role == UserRole.SUPERADMIN.value:
        return RoleView(role=role, visible_tabs=ALL_TABS, permissions=ALL_PERMISSIONS)

    values = settings_row.snapshot() if settings_row is not None else default_settings_values()
    shown = _globally_shown(values)

    if role == UserRole.USER.value:
        return RoleView(role=role, visible_tabs=shown, permissions=ALL_PERMISSIONS)

    if role == UserRole.ADMIN.value:
        permissions = {p for p in ADMIN_CONFIGURABLE if _flag(values, f"admin_can_{p.value}")}
        permissions.update(ADMIN_OPERATIONAL)
        return RoleView(role=role, visible_tabs=shown, permissions=frozenset(permissions))

    if role in (UserRole.CHEF.value, UserRole.RECEPTION.value):
        tabs = {tab for tab in STAFF_TABS if _flag(values, f"{role}_show_{tab.value}_tab")}
        permissions = {
            p for p in (Permission.EDIT_ORDERS, Permission.CREATE_ORDERS,
                        Permission.VIEW_CUSTOMERS, Permission.VIEW_PAYMENTS)
            if _flag(values, f"{role}_can_{p.value}")
        }
        if Permission.VIEW_CUSTOMERS in permissions:
            tabs.add(Tab.CUSTOMERS)
        if Permission.VIEW_PAYMENTS in permissions:
            tabs.add(Tab.PAYMENT_METHODS)
        return RoleView(role=role, visible_tabs=frozenset(tabs & shown), permissions=frozenset(permissions))

    return RoleView(role=role)


async def get_tenant_settings(db: AsyncSession, tenant_id: int) -> Optional[TenantSettings]:
    result = await db.execute(select(TenantSettings).where(TenantSettings.tenant_id == tenant_id))
    return result.scalar_one_or_none()


async def get_role_view(db: AsyncSession, tenant_id: int, role: str) -> RoleView:
    if role == UserRole.SUPERADMIN.value:
        return resolve_role_view(None, role)
    return resolve_role_view(await get_tenant_settings(db, tenant_id), role)
