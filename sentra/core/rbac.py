from fastapi import HTTPException, status

from sentra.platform.security.context import AuthContext

OWNER = "OWNER"
ADMIN = "ADMIN"
SALES_MANAGER = "SALES_MANAGER"
PROJECT_MANAGER = "PROJECT_MANAGER"
FRONTSELL_AGENT = "FRONTSELL_AGENT"
UPSELL_AGENT = "UPSELL_AGENT"

# Lowest to highest.
ROLE_HIERARCHY = [UPSELL_AGENT, FRONTSELL_AGENT, PROJECT_MANAGER, SALES_MANAGER, ADMIN, OWNER]
ALL_ROLES = frozenset(ROLE_HIERARCHY)

_LEAD_WRITERS = frozenset({OWNER, ADMIN, SALES_MANAGER, PROJECT_MANAGER, FRONTSELL_AGENT})
_MANAGERS = frozenset({OWNER, ADMIN, SALES_MANAGER})
_ADMINS = frozenset({OWNER, ADMIN})

PERMISSION_ROLES: dict[str, frozenset[str]] = {
    "leads.read": ALL_ROLES,
    "leads.create": _LEAD_WRITERS,
    "leads.update": _LEAD_WRITERS,
    "leads.change_status": _LEAD_WRITERS,
    "leads.note": _LEAD_WRITERS,
    "leads.assign": _MANAGERS,
    "leads.convert": _MANAGERS,
    "leads.delete": _ADMINS,
    "sales.read": ALL_ROLES,
    "sales.create": frozenset({OWNER, ADMIN, SALES_MANAGER, PROJECT_MANAGER}),
    "sales.update": frozenset({OWNER, ADMIN, SALES_MANAGER, PROJECT_MANAGER}),
    "sales.delete": _ADMINS,
    "sales.charge": _ADMINS,
    "sales.payment_profile": _ADMINS,
    "sales.subscribe": _ADMINS,
    "sales.cancel_subscription": _ADMINS,
    "invoices.read": ALL_ROLES,
    "invoices.create": frozenset({OWNER, ADMIN, PROJECT_MANAGER}),
    "invoices.update": frozenset({OWNER, ADMIN, PROJECT_MANAGER}),
    "invoices.refresh_overdue": frozenset({OWNER, ADMIN, PROJECT_MANAGER}),
    "invoices.delete": _ADMINS,
    "invoices.pay": _ADMINS,
    "system.metrics.read": _ADMINS,
}


def has_permission(role: str, permission: str) -> bool:
    return role in PERMISSION_ROLES.get(permission, frozenset())


def require_permission(ctx: AuthContext, permission: str) -> None:
    if not has_permission(ctx.role, permission):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")
