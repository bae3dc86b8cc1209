from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from sentra.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("sentra.request")


def _record(request: Request, status_code: int, started: float, *, failed: bool = False) -> None:
    duration = time.perf_counter() - started
    # Resolved after dispatch so the matched route template is available.
    path = resolve_http_path_label(request)
    observe_http_request(method=request.method, path=path, status=status_code, duration=duration)
    fields = {
        "method": request.method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration * 1000, 2),
    }
    if failed:
        logger.error("http.error", exc_info=True, extra=fields)
    else:
        logger.info("http.request", extra=fields)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            _record(request, 500, started, failed=True)
            raise
        _record(request, response.status_code, started)
        return response
