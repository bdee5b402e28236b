"""OpenTelemetry wiring.

One ``TracerProvider`` per process, registered globally on first use. Module
level tracers obtained before that point are proxies and start recording once
the provider exists.
"""

from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from billing_analytics.core.config import Settings, get_settings


_provider: TracerProvider | None = None
_exporters_attached = False


def get_tracer_provider(settings: Settings | None = None) -> TracerProvider:
    global _provider

    if _provider is None:
        settings = settings or get_settings()
        resource = Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.app_env,
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def configure_tracing(settings: Settings) -> TracerProvider | None:
    global _exporters_attached

    if not settings.otel_enabled:
        return None

    provider = get_tracer_provider(settings)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_attached = True
    return provider


def attach_inmemory_exporter() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    get_tracer_provider().add_span_processor(SimpleSpanProcessor(exporter))
    return exporter
