from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from sentra.core.config import Settings


SERVICE_NAME = "sentra-api"

_exporters_attached = False
_provider: TracerProvider | None = None


def _tracer_provider(version: str) -> TracerProvider:
    global _provider

    if _provider is None:
        _provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME, "service.version": version}))
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    """Install the tracer provider and attach the exporters named in settings.

    Safe to call more than once; exporters are attached on the first call only.
    """
    global _exporters_attached

    if not settings.otel_enabled:
        return None

    provider = _tracer_provider(settings.app_version)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_attached = True
    return provider


def setup_inmemory_otel(version: str = "test") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider(version).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def correlation_request_hook(span: Any, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    for name, value in scope.get("headers", []):
        if name == b"x-correlation-id":
            span.set_attribute("correlation_id", value.decode("latin-1"))
            return
