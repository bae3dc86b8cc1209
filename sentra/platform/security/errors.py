from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for tenancy enforcement failures."""


class TenancyViolationError(AuthorizationError):
    """Raised when an entity exists but belongs to a different organization."""

    def __init__(self, entity_label: str) -> None:
        self.entity_label = entity_label
        super().__init__(f"{entity_label} belongs to another organization")
