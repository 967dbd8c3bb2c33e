"""
OpenTelemetry tracing setup.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Tracer

from queuectl import __version__
from queuectl.config import get_settings

# Global tracer instance
_tracer: Tracer | None = None


def setup_tracing(enable_console_export: bool = False) -> Tracer:
    """
    Set up OpenTelemetry tracing.

    Spans are exported over OTLP only when an endpoint is configured.

    Args:
        enable_console_export: If True, also export spans to console.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer

    settings = get_settings()

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
        }
    )
    provider = TracerProvider(resource=resource)

    if settings.otel_exporter_otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(settings.otel_service_name)

    return _tracer


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Instrument a SQLAlchemy engine with OpenTelemetry.

    Args:
        engine: The sync SQLAlchemy engine (AsyncEngine.sync_engine).
    """
    SQLAlchemyInstrumentor().instrument(engine=engine)


def get_tracer() -> Tracer:
    """
    Get the tracer instance, setting tracing up on first use.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer
    if _tracer is None:
        _tracer = setup_tracing()
    return _tracer
