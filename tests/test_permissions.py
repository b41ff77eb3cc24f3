from models import TenantSettings
from permissions import (
    Permission, Tab, ALL_PERMISSIONS, ALL_TABS, ADMIN_OPERATIONAL,
    resolve_role_view, default_settings_values
)


def settings_row(**overrides) -> TenantSettings:
    values = default_settings_values()
    values.update(overrides)
    return TenantSettings(tenant_id=1, **values)


def test_super_admin_sees_everything():
    view = resolve_role_view(None, "superadmin")
    assert view.visible_tabs == ALL_TABS
    assert view.permissions == ALL_PERMISSIONS


def test_owner_has_every_permission_but_respects_global_tabs():
    view = resolve_role_view(settings_row(show_inventory_tab=False), "user")
    assert view.permissions == ALL_PERMISSIONS
    assert Tab.INVENTORY not in view.visible_tabs
    assert Tab.KITCHEN in view.visible_tabs


def test_admin_defaults():
    view = resolve_role_view(None, "admin")
    assert view.can(Permission.VIEW_REPORTS)
    assert view.can(Permission.MANAGE_MENU)
    assert view.can(Permission.MANAGE_INVENTORY)
    assert not view.can(Permission.ACCESS_SETTINGS)
    assert not view.can(Permission.MANAGE_USERS)
    for permission in ADMIN_OPERATIONAL:
        assert view.can(permission)


def test_admin_configurable_permissions():
    view = resolve_role_view(
        settings_row(admin_can_access_settings=True, admin_can_view_reports=False),
        "admin"
    )
    assert view.can(Permission.ACCESS_SETTINGS)
    assert not view.can(Permission.VIEW_REPORTS)


def test_chef_defaults():
    view = resolve_role_view(None, "chef")
    assert view.visible_tabs == frozenset({Tab.KITCHEN, Tab.HISTORY})
    assert view.can(Permission.EDIT_ORDERS)
    assert not view.can(Permission.CREATE_ORDERS)
    assert not view.can(Permission.VIEW_CUSTOMERS)


def test_reception_permission_flags_add_tabs():
    view = resolve_role_view(None, "reception")
    assert view.can(Permission.CREATE_ORDERS)
    assert view.can(Permission.VIEW_CUSTOMERS)
    assert Tab.CUSTOMERS in view.visible_tabs
    assert Tab.PAYMENT_METHODS in view.visible_tabs


def test_globally_hidden_tab_hides_it_for_staff():
    view = resolve_role_view(settings_row(show_kitchen_tab=False), "chef")
    assert Tab.KITCHEN not in view.visible_tabs


def test_unknown_role_gets_nothing():
    view = resolve_role_view(None, "janitor")
    assert not view.visible_tabs
    assert not view.permissions


def test_role_view_serialization():
    data = resolve_role_view(None, "chef").to_dict()
    assert data["role"] == "chef"
    assert data["visibleTabs"] == ["history", "kitchen"]
    assert data["permissions"] == ["edit_orders"]
