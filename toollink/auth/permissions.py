"""Role → permission table and pure permission queries.

Permissions follow the `resource.action` convention. The table is fixed
at import time; nothing mutates it at runtime. Role strings are
canonicalized in exactly one place, `normalize_role`.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from typing import Any


class Role(str, enum.Enum):
    """Coarse-grained identity category issued by the backend."""

    ADMIN = "admin"
    USER = "user"
    WAREHOUSE = "warehouse"
    CASHIER = "cashier"
    CUSTOMER = "customer"
    DRIVER = "driver"
    EDITOR = "editor"


# ── Permissions ──────────────────────────────────────────────

FULL_SYSTEM_ACCESS = "*"

# System administration
MANAGE_USERS = "users.manage"
MANAGE_ROLES = "users.roles"
VIEW_AUDIT_LOGS = "audit.view"
MANAGE_SYSTEM_CONFIG = "system.config"
VIEW_SYSTEM_REPORTS = "reports.system.view"
BULK_USER_OPERATIONS = "users.bulk"

# Users
USER_CREATE = "users.create"
USER_READ = "users.read"
USER_UPDATE = "users.update"
USER_DELETE = "users.delete"
USER_APPROVE = "users.approve"
USER_SUSPEND = "users.suspend"

# Inventory
INVENTORY_VIEW = "inventory.view"
INVENTORY_CREATE = "inventory.create"
INVENTORY_UPDATE = "inventory.update"
INVENTORY_DELETE = "inventory.delete"
INVENTORY_STOCK_IN = "inventory.stock_in"
INVENTORY_STOCK_OUT = "inventory.stock_out"
INVENTORY_ADJUST = "inventory.adjust"
INVENTORY_ANALYTICS = "inventory.analytics"

# Orders
ORDER_VIEW = "order.view"
ORDER_CREATE = "order.create"
ORDER_UPDATE = "order.update"
ORDER_DELETE = "order.delete"
ORDER_APPROVE = "order.approve"
ORDER_CANCEL = "order.cancel"
ORDER_TRACK = "order.track"
ORDER_VIEW_ALL = "order.view_all"

# Warehouses
WAREHOUSE_VIEW = "warehouse.view"
WAREHOUSE_CREATE = "warehouse.create"
WAREHOUSE_UPDATE = "warehouse.update"
WAREHOUSE_DELETE = "warehouse.delete"
WAREHOUSE_MANAGE = "warehouse.manage"

# Suppliers
SUPPLIER_VIEW = "supplier.view"
SUPPLIER_CREATE = "supplier.create"
SUPPLIER_UPDATE = "supplier.update"
SUPPLIER_DELETE = "supplier.delete"

# Materials
MATERIAL_VIEW = "material.view"
MATERIAL_CREATE = "material.create"
MATERIAL_UPDATE = "material.update"
MATERIAL_DELETE = "material.delete"

# Deliveries
DELIVERY_VIEW = "delivery.view"
DELIVERY_CREATE = "delivery.create"
DELIVERY_UPDATE = "delivery.update"
DELIVERY_ASSIGN = "delivery.assign"
DELIVERY_TRACK = "delivery.track"

# Reports
REPORT_VIEW = "report.view"
REPORT_CREATE = "report.create"
REPORT_EXPORT = "report.export"
REPORT_ANALYTICS = "report.analytics"

# Notifications
NOTIFICATION_VIEW = "notification.view"
NOTIFICATION_CREATE = "notification.create"
NOTIFICATION_SEND = "notification.send"

# Feedback
FEEDBACK_VIEW = "feedback.view"
FEEDBACK_RESPOND = "feedback.respond"

# Profile
PROFILE_VIEW = "profile.view"
PROFILE_UPDATE = "profile.update"
PROFILE_DELETE = "profile.delete"

# Content (editor)
CONTENT_EDIT = "content.edit"
CONTENT_PUBLISH = "content.publish"

# Dashboards
DASHBOARD_VIEW = "dashboard.view"
ANALYTICS_VIEW = "analytics.view"

USE_BASIC_FEATURES = "use_basic_features"

# ── Permission groups (for display) ──────────────────────────

PERMISSION_GROUPS: dict[str, list[str]] = {
    "system": [
        MANAGE_USERS, MANAGE_ROLES, VIEW_AUDIT_LOGS,
        MANAGE_SYSTEM_CONFIG, VIEW_SYSTEM_REPORTS, BULK_USER_OPERATIONS,
    ],
    "users": [USER_CREATE, USER_READ, USER_UPDATE, USER_DELETE, USER_APPROVE, USER_SUSPEND],
    "inventory": [
        INVENTORY_VIEW, INVENTORY_CREATE, INVENTORY_UPDATE, INVENTORY_DELETE,
        INVENTORY_STOCK_IN, INVENTORY_STOCK_OUT, INVENTORY_ADJUST, INVENTORY_ANALYTICS,
    ],
    "orders": [
        ORDER_VIEW, ORDER_CREATE, ORDER_UPDATE, ORDER_DELETE,
        ORDER_APPROVE, ORDER_CANCEL, ORDER_TRACK, ORDER_VIEW_ALL,
    ],
    "warehouses": [
        WAREHOUSE_VIEW, WAREHOUSE_CREATE, WAREHOUSE_UPDATE, WAREHOUSE_DELETE, WAREHOUSE_MANAGE,
    ],
    "suppliers": [SUPPLIER_VIEW, SUPPLIER_CREATE, SUPPLIER_UPDATE, SUPPLIER_DELETE],
    "materials": [MATERIAL_VIEW, MATERIAL_CREATE, MATERIAL_UPDATE, MATERIAL_DELETE],
    "deliveries": [
        DELIVERY_VIEW, DELIVERY_CREATE, DELIVERY_UPDATE, DELIVERY_ASSIGN, DELIVERY_TRACK,
    ],
    "reports": [REPORT_VIEW, REPORT_CREATE, REPORT_EXPORT, REPORT_ANALYTICS],
    "notifications": [NOTIFICATION_VIEW, NOTIFICATION_CREATE, NOTIFICATION_SEND],
    "feedback": [FEEDBACK_VIEW, FEEDBACK_RESPOND],
    "profile": [PROFILE_VIEW, PROFILE_UPDATE, PROFILE_DELETE],
    "content": [CONTENT_EDIT, CONTENT_PUBLISH],
    "dashboards": [DASHBOARD_VIEW, ANALYTICS_VIEW, USE_BASIC_FEATURES],
}

ALL_PERMISSIONS: list[str] = sorted({p for group in PERMISSION_GROUPS.values() for p in group})

_BASIC = (DASHBOARD_VIEW, PROFILE_VIEW, PROFILE_UPDATE, USE_BASIC_FEATURES)

# ── Role → permissions ───────────────────────────────────────

ROLE_PERMISSIONS: Mapping[str, frozenset[str]] = {
    Role.ADMIN.value: frozenset({FULL_SYSTEM_ACCESS}),
    Role.USER.value: frozenset(_BASIC),
    Role.WAREHOUSE.value: frozenset({
        INVENTORY_VIEW, INVENTORY_CREATE, INVENTORY_UPDATE,
        INVENTORY_STOCK_IN, INVENTORY_STOCK_OUT, INVENTORY_ADJUST, INVENTORY_ANALYTICS,
        WAREHOUSE_VIEW, WAREHOUSE_UPDATE, WAREHOUSE_MANAGE,
        MATERIAL_VIEW, MATERIAL_CREATE, MATERIAL_UPDATE,
        SUPPLIER_VIEW, SUPPLIER_CREATE, SUPPLIER_UPDATE,
        DELIVERY_VIEW, DELIVERY_CREATE, DELIVERY_UPDATE, DELIVERY_ASSIGN, DELIVERY_TRACK,
        ORDER_VIEW, ORDER_UPDATE, ORDER_TRACK,
        *_BASIC,
    }),
    Role.CASHIER.value: frozenset({
        ORDER_VIEW, ORDER_CREATE, ORDER_UPDATE, ORDER_APPROVE,
        ORDER_CANCEL, ORDER_TRACK, ORDER_VIEW_ALL,
        USER_APPROVE, USER_READ,
        INVENTORY_VIEW,
        MATERIAL_VIEW,
        REPORT_VIEW, REPORT_CREATE, ANALYTICS_VIEW,
        *_BASIC,
    }),
    Role.CUSTOMER.value: frozenset({
        ORDER_VIEW, ORDER_CREATE, ORDER_TRACK,
        MATERIAL_VIEW,
        FEEDBACK_VIEW,
        *_BASIC,
    }),
    Role.DRIVER.value: frozenset({
        DELIVERY_VIEW, DELIVERY_UPDATE, DELIVERY_TRACK,
        ORDER_VIEW, ORDER_TRACK,
        *_BASIC,
    }),
    Role.EDITOR.value: frozenset({
        CONTENT_EDIT, CONTENT_PUBLISH,
        MATERIAL_VIEW, MATERIAL_CREATE, MATERIAL_UPDATE,
        *_BASIC,
    }),
}

# ── Route → any-of permissions ───────────────────────────────

ROUTE_PERMISSIONS: Mapping[str, frozenset[str]] = {
    "/admin": frozenset({FULL_SYSTEM_ACCESS, MANAGE_USERS}),
    "/users": frozenset({USER_READ, MANAGE_USERS}),
    "/inventory": frozenset({INVENTORY_VIEW}),
    "/orders": frozenset({ORDER_VIEW}),
    "/warehouses": frozenset({WAREHOUSE_VIEW}),
    "/suppliers": frozenset({SUPPLIER_VIEW}),
    "/materials": frozenset({MATERIAL_VIEW}),
    "/deliveries": frozenset({DELIVERY_VIEW}),
    "/reports": frozenset({REPORT_VIEW}),
    "/analytics": frozenset({ANALYTICS_VIEW}),
    "/dashboard": frozenset({DASHBOARD_VIEW}),
    "/profile": frozenset({PROFILE_VIEW}),
}

_ROLE_DISPLAY_NAMES: Mapping[str, str] = {
    Role.ADMIN.value: "Administrator",
    Role.USER.value: "User",
    Role.WAREHOUSE.value: "Warehouse Manager",
    Role.CASHIER.value: "Cashier",
    Role.CUSTOMER.value: "Customer",
    Role.DRIVER.value: "Driver",
    Role.EDITOR.value: "Content Editor",
}


def normalize_role(role: Role | str | None) -> str:
    """Canonical form of a role tag: stripped, lower-case; None → ""."""
    if role is None:
        return ""
    if isinstance(role, Role):
        return role.value
    return str(role).strip().lower()


def _role_of(identity: Any) -> str:
    """Extract the canonical role from an Identity, a mapping or None."""
    if identity is None:
        return ""
    if isinstance(identity, Mapping):
        return normalize_role(identity.get("role"))
    return normalize_role(getattr(identity, "role", None))


def is_admin(role: Role | str | None) -> bool:
    return normalize_role(role) == Role.ADMIN.value


def role_permissions(role: Role | str | None) -> frozenset[str]:
    """Fixed permission set of a role; empty for an unrecognized role."""
    return ROLE_PERMISSIONS.get(normalize_role(role), frozenset())


def has_permission(role: Role | str | None, permission: str | None) -> bool:
    """True if the role is admin, holds the wildcard, or holds `permission`."""
    if not permission:
        return False
    canonical = normalize_role(role)
    if canonical == Role.ADMIN.value:
        return True
    perms = ROLE_PERMISSIONS.get(canonical)
    if not perms:
        return False
    return FULL_SYSTEM_ACCESS in perms or permission in perms


def has_any_permission(role: Role | str | None, permissions: Iterable[str]) -> bool:
    return any(has_permission(role, p) for p in permissions)


def has_role(identity: Any, role: Role | str) -> bool:
    """Case-insensitive comparison of the identity's role with `role`."""
    current = _role_of(identity)
    return bool(current) and current == normalize_role(role)


def has_any_role(identity: Any, roles: Iterable[Role | str]) -> bool:
    """Admin always matches; otherwise the identity's role must be in `roles`."""
    current = _role_of(identity)
    if not current:
        return False
    if current == Role.ADMIN.value:
        return True
    return current in {normalize_role(r) for r in roles}


def route_requires_any_of(route: str) -> frozenset[str] | None:
    """Permissions guarding a route; None means the route is unrestricted."""
    return ROUTE_PERMISSIONS.get(route)


def can_access_route(role: Role | str | None, route: str) -> bool:
    """True if the route is unrestricted or the role holds any required permission."""
    required = route_requires_any_of(route)
    if required is None:
        return True
    return has_any_permission(role, required)


def role_display_name(role: Role | str) -> str:
    """User-friendly role name; unknown roles are echoed back."""
    return _ROLE_DISPLAY_NAMES.get(normalize_role(role), str(role))
