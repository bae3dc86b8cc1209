from __future__ import annotations

import re
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from sentra.context import reset_correlation_id, set_correlation_id


HEADER = "x-correlation-id"
_ACCEPTED = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def incoming_correlation_id(request: Request) -> str:
    supplied = request.headers.get(HEADER, "").strip()
    if supplied and _ACCEPTED.match(supplied):
        return supplied
    return str(uuid.uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = incoming_correlation_id(request)
        request.state.correlation_id = correlation_id
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        token = set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers[HEADER] = correlation_id
        return response
