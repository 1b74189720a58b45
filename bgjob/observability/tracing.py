"""
OpenTelemetry tracing setup.
"""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Tracer

from bgjob import __version__
from bgjob.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Global tracer instance
_tracer: Tracer | None = None
_provider: TracerProvider | None = None


def setup_tracing(settings: Settings | None = None) -> Tracer:
    """
    Set up OpenTelemetry tracing.

    When tracing is disabled in settings the API's no-op tracer is used and
    nothing is exported.

    Args:
        settings: Settings to read the exporter configuration from.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer, _provider

    settings = settings or get_settings()

    if not settings.tracing_enabled:
        _tracer = trace.get_tracer(settings.otel_service_name)
        return _tracer

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
        }
    )

    provider = TracerProvider(resource=resource)

    otlp_exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        insecure=True,
    )
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(provider)
    _provider = provider

    _tracer = trace.get_tracer(settings.otel_service_name)
    logger.debug("Tracing enabled", extra={"endpoint": settings.otel_exporter_otlp_endpoint})

    return _tracer


def shutdown_tracing() -> None:
    """Flush pending spans before the process exits."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None


def get_tracer() -> Tracer:
    """
    Get the tracer instance.

    Returns:
        Tracer: The tracer instance, or the no-op tracer if tracing was never set up.
    """
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer
