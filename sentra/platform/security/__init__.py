from sentra.platform.security.context import AuthContext
from sentra.platform.security.errors import AuthorizationError, TenancyViolationError
from sentra.platform.security.repository import OrganizationScopedRepository

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "TenancyViolationError",
    "OrganizationScopedRepository",
]
