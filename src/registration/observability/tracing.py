"""
OpenTelemetry tracing for the registration service.

Spans are always created through the OpenTelemetry API, which is a no-op
until ``init_tracing`` installs an SDK provider. Exporters are configured from
the standard OTLP environment variables.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

TRACER_NAME = "registration"

_TRUTHY = ("true", "1", "yes", "on")

_instrumented = False


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


def get_tracer() -> trace.Tracer:
    """Get the tracer used for workflow and step spans."""
    return trace.get_tracer(TRACER_NAME)


def init_tracing(service_name: str | None = None, enabled: bool | None = None) -> bool:
    """Initialize OpenTelemetry tracing with OTLP and optional console export.

    Args:
        service_name: Name of the service for tracing (overrides OTEL_SERVICE_NAME)
        enabled: Force tracing on or off (overrides OTEL_TRACING_ENABLED)

    Returns:
        True when a tracer provider was installed by this call.
    """
    global _instrumented

    if _instrumented:
        logger.debug("OpenTelemetry already initialized")
        return False

    if enabled is None:
        enabled = _env_flag("OTEL_TRACING_ENABLED")
    if not enabled:
        logger.info("OpenTelemetry tracing is disabled")
        return False

    final_service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "registration-service")
    resource = Resource.create(
        {
            "service.name": final_service_name,
            "service.version": os.getenv("OTEL_SERVICE_VERSION", "1.0.0"),
            "deployment.environment": os.getenv("OTEL_ENVIRONMENT", "development"),
        }
    )
    provider = TracerProvider(resource=resource)

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
    if endpoint:
        headers = {}
        for header in os.getenv("OTEL_EXPORTER_OTLP_HEADERS", "").split(","):
            if "=" in header:
                key, value = header.split("=", 1)
                headers[key.strip()] = value.strip()

        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(
                    endpoint=endpoint,
                    headers=headers,
                    insecure=_env_flag("OTEL_EXPORTER_OTLP_INSECURE", "true"),
                )
            )
        )
        logger.info("OTLP trace exporter configured for %s", endpoint)

    if _env_flag("OTEL_CONSOLE_EXPORT"):
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console trace exporter enabled")

    trace.set_tracer_provider(provider)
    _instrumented = True
    logger.info("OpenTelemetry tracing initialized for service: %s", final_service_name)
    return True
