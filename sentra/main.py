from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from sentra import events
from sentra.api.routes import router as api_router
from sentra.core.config import get_settings
from sentra.logging import configure_logging
from sentra.middleware.correlation_id import CorrelationIdMiddleware
from sentra.middleware.request_logging import RequestLoggingMiddleware
from sentra.otel import correlation_request_hook, setup_otel


settings = get_settings()
configure_logging(settings)
logger = logging.getLogger("sentra.lifecycle")


def _on_started(envelope: events.Envelope) -> None:
    logger.info("system.started", extra={"event_type": envelope["event_type"]})


def _on_password_reset_requested(envelope: events.Envelope) -> None:
    # Mail delivery belongs to the notification worker, which consumes the same envelope.
    logger.info(
        "auth.password_reset_mail_queued",
        extra={"event_type": envelope["event_type"], "organization_id": envelope["organization_id"]},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    events.subscribe("system.started", _on_started)
    events.subscribe("auth.password_reset_requested", _on_password_reset_requested)
    events.publish(
        events.build_envelope(
            "system.started",
            organization_id=None,
            actor_user_id=None,
            payload={"service": settings.app_name, "version": settings.app_version},
        )
    )
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=correlation_request_hook)
