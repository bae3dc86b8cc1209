from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from sentra.context import get_correlation_id
from sentra.core.config import Settings


MAX_FIELD_LENGTH = 500

# Structured fields copied from `extra` into the JSON line; anything else stays out of the logs.
LOGGED_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "organization_id",
        "lead_id",
        "sale_id",
        "invoice_id",
        "invoice_number",
        "transaction_id",
        "subscription_id",
        "operation",
        "event_type",
        "notification_id",
        "status",
        "error",
    }
)

_previous_factory = logging.getLogRecordFactory()


def _stamp_correlation_id(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _previous_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


class CorrelationIdFilter(logging.Filter):
    """Fills correlation_id on records built outside the installed factory."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = get_correlation_id()
        return True


class JsonLogFormatter(logging.Formatter):
    def __init__(self, service: str = "sentra-api") -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {}
        for name in LOGGED_FIELDS:
            if name not in record.__dict__:
                continue
            value = record.__dict__[name]
            if isinstance(value, str) and len(value) > MAX_FIELD_LENGTH:
                value = value[:MAX_FIELD_LENGTH]
            fields[name] = value
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        line = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(line, default=str)


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger()
    if getattr(root, "_sentra_configured", False):
        return

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=settings.app_name))
    handler.addFilter(CorrelationIdFilter())

    logging.setLogRecordFactory(_stamp_correlation_id)
    root.handlers[:] = [handler]
    root.setLevel(level)
    root._sentra_configured = True  # type: ignore[attr-defined]
