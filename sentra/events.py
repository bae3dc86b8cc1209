from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from sentra.context import get_correlation_id

Envelope = dict[str, Any]
Subscriber = Callable[[Envelope], None]

published_events: list[Envelope] = []
_subscribers: dict[str, list[Subscriber]] = defaultdict(list)


def build_envelope(
    event_type: str,
    *,
    organization_id: str | None,
    actor_user_id: str | None,
    payload: dict[str, Any],
) -> Envelope:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "organization_id": organization_id,
        "actor_user_id": actor_user_id,
        "version": 1,
        "payload": payload,
    }


def subscribe(event_type: str, subscriber: Subscriber) -> None:
    handlers = _subscribers[event_type]
    if subscriber not in handlers:
        handlers.append(subscriber)


def publish(envelope: Envelope) -> None:
    """Record the envelope and hand it to in-process subscribers.

    Called after the owning transaction commits, so subscribers only ever see
    persisted state.
    """
    envelope.setdefault("correlation_id", None)
    if envelope["correlation_id"] is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    for subscriber in list(_subscribers.get(envelope["event_type"], ())):
        subscriber(envelope)
