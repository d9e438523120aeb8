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

from jobstore import __version__
from jobstore.config import Settings, get_settings

# Global tracer instance
_tracer: Tracer | None = None


def setup_tracing(
    settings: Settings | None = None,
    enable_console_export: bool = False,
) -> Tracer:
    """
    Set up OpenTelemetry tracing.

    Args:
        settings: Settings to use; defaults to the cached environment settings.
        enable_console_export: If True, also export spans to console.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer

    settings = settings or get_settings()

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
        }
    )

    provider = TracerProvider(resource=resource)

    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=settings.otel_exporter_otlp_endpoint,
                insecure=True,
            )
        )
    )

    if enable_console_export:
        provider.add_span_processor(
            BatchSpanProcessor(ConsoleSpanExporter())
        )

    trace.set_tracer_provider(provider)

    _tracer = trace.get_tracer(settings.otel_service_name)

    return _tracer


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Instrument a SQLAlchemy engine with OpenTelemetry.

    Args:
        engine: The sync engine behind an AsyncEngine (``engine.sync_engine``).
    """
    SQLAlchemyInstrumentor().instrument(engine=engine)


def get_tracer() -> Tracer:
    """
    Get the tracer instance.

    Returns:
        Tracer: The configured tracer, or the global provider's tracer
        (a no-op unless something installed a provider) when
        setup_tracing() was never called.
    """
    if _tracer is None:
        return trace.get_tracer("jobstore")
    return _tracer
