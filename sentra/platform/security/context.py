from __future__ import annotations

import uuid
from dataclasses import dataclass


@dataclass(slots=True)
class AuthContext:
    """Caller identity resolved from the bearer token; every service call is scoped by it."""

    user_id: uuid.UUID
    organization_id: uuid.UUID
    role: str
    correlation_id: str | None = None
