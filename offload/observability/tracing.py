"""
OpenTelemetry tracing.

Spans cover submit, claim, execute, finalize and sweep. With
``instrument_redis`` every store command shows up beneath them.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

from offload import __version__
from offload.config import get_settings

_tracer: Tracer | None = None


def setup_tracing() -> Tracer:
    """
    Install a tracer provider for this process.

    Spans leave the process only when ``otel_exporter_otlp_endpoint`` is
    set; otherwise they are recorded for log correlation and dropped.
    """
    global _tracer

    settings = get_settings()
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
    )

    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(settings.otel_service_name)
    return _tracer


def instrument_redis() -> None:
    """Trace every store command issued through redis-py."""
    RedisInstrumentor().instrument()


def get_tracer() -> Tracer:
    # No-op until setup_tracing, unless the host application installed a provider
    if _tracer is None:
        return trace.get_tracer("offload")
    return _tracer


def set_span_attributes(span: Span, **attributes: Any) -> None:
    """Set ``offload.``-prefixed attributes, skipping None values."""
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(f"offload.{key}", str(value))
