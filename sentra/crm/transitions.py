"""Lead status transition rules.

Pure legality checks only. Role checks happen before these are consulted and
persistence happens after.
"""

from __future__ import annotations

from typing import Literal

LeadStatus = Literal["NEW", "CONTACTED", "PROPOSAL", "CLOSED"]

NEW = "NEW"
CONTACTED = "CONTACTED"
PROPOSAL = "PROPOSAL"
CLOSED = "CLOSED"

LEAD_STATUSES: tuple[str, ...] = (NEW, CONTACTED, PROPOSAL, CLOSED)
INITIAL_STATUS = NEW

LEAD_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    NEW: frozenset({CONTACTED, CLOSED}),
    CONTACTED: frozenset({PROPOSAL, CLOSED}),
    PROPOSAL: frozenset({CLOSED, CONTACTED}),
    CLOSED: frozenset(),
}


class InvalidTransitionError(ValueError):
    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


def allowed_transitions(current: str) -> frozenset[str]:
    return LEAD_STATUS_TRANSITIONS.get(current, frozenset())


def can_transition(current: str, target: str) -> bool:
    return target in allowed_transitions(current)


def is_terminal(status: str) -> bool:
    return not allowed_transitions(status)


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
