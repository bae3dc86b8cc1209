from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

payment_gateway_calls_total = Counter(
    "payment_gateway_calls_total",
    "Payment gateway calls by operation and outcome",
    ["operation", "outcome"],
)

payment_gateway_call_duration_seconds = Histogram(
    "payment_gateway_call_duration_seconds",
    "Payment gateway call duration in seconds",
    ["operation"],
)

payment_webhook_events_total = Counter(
    "payment_webhook_events_total",
    "Payment webhook notifications by event type and result",
    ["event_type", "result"],
)

invoice_number_conflicts_total = Counter(
    "invoice_number_conflicts_total",
    "Invoice inserts retried after an invoice number collision",
)

read_cache_requests_total = Counter(
    "read_cache_requests_total",
    "Read cache lookups by entity and result",
    ["entity", "result"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_gateway_call(operation: str, success: bool, duration: float) -> None:
    outcome = "success" if success else "failure"
    payment_gateway_calls_total.labels(operation=operation, outcome=outcome).inc()
    payment_gateway_call_duration_seconds.labels(operation=operation).observe(duration)


def observe_webhook_event(event_type: str, result: str) -> None:
    payment_webhook_events_total.labels(event_type=event_type, result=result).inc()


def observe_invoice_number_conflict() -> None:
    invoice_number_conflicts_total.inc()


def observe_cache_lookup(entity: str, hit: bool) -> None:
    read_cache_requests_total.labels(entity=entity, result="hit" if hit else "miss").inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
