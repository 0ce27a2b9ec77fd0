"""
OpenTelemetry configuration for the Agent Event Gateway.
Configures TracerProvider, FastAPIInstrumentor, Azure Monitor + OTLP exporters.
"""

import contextlib
import os
from typing import Any, Dict, Optional
import structlog

logger = structlog.get_logger()

# Service metadata
SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "agent-event-gateway")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


def configure_telemetry(app=None):
    """
    Configure OpenTelemetry with Azure Monitor and OTLP exporters.

    Exporters are only attached when their endpoint/connection string is set,
    so a bare development run just gets an in-process provider.

    Args:
        app: FastAPI app instance for instrumentation
    """
    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.resources import Resource

        resource = Resource.create({
            "service.name": SERVICE_NAME,
            "service.version": SERVICE_VERSION,
            "deployment.environment": ENVIRONMENT,
            "service.namespace": "agent-event-gateway",
        })

        provider = TracerProvider(resource=resource)

        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        if otlp_endpoint:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            from opentelemetry.sdk.trace.export import BatchSpanProcessor

            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
            logger.info("otel_otlp_configured", endpoint=otlp_endpoint)

        app_insights_conn = os.getenv("APPLICATIONINSIGHTS_CONNECTION_STRING")
        if app_insights_conn:
            from azure.monitor.opentelemetry.exporter import AzureMonitorTraceExporter
            from opentelemetry.sdk.trace.export import BatchSpanProcessor

            azure_exporter = AzureMonitorTraceExporter(
                connection_string=app_insights_conn,
            )
            provider.add_span_processor(BatchSpanProcessor(azure_exporter))
            logger.info("otel_azure_monitor_configured")

        trace.set_tracer_provider(provider)

        if app:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(app)
            logger.info("otel_fastapi_instrumented")

        logger.info(
            "otel_configured",
            service=SERVICE_NAME,
            environment=ENVIRONMENT,
        )

    except ImportError as e:
        logger.warning("otel_not_available", error=str(e))
    except Exception as e:
        logger.error("otel_configuration_failed", error=str(e))


def get_tracer(name: str = SERVICE_NAME):
    """Get a tracer instance."""
    try:
        from opentelemetry import trace
        return trace.get_tracer(name)
    except ImportError:
        return None


@contextlib.contextmanager
def traced_span(tracer, span_name: str, attributes: Optional[Dict[str, Any]] = None):
    """
    Open a span carrying gateway attributes (None values are skipped).

    Yields the span, or None when tracing is unavailable; the helpers below
    accept either.
    """
    if tracer is None:
        yield None
        return
    with tracer.start_as_current_span(span_name, attributes=_span_attributes(attributes)) as span:
        yield span


def set_span_attributes(span, **attributes: Any):
    if span is None:
        return
    span.set_attributes(_span_attributes(attributes))


def mark_span_error(span, description: str):
    """Flag a span as failed without relying on an exception escaping it."""
    if span is None:
        return
    from opentelemetry.trace import Status, StatusCode
    span.set_status(Status(StatusCode.ERROR, description))


def _span_attributes(attributes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    # OTel attribute values must be str/bool/int/float
    clean = {}
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        clean[key] = value if isinstance(value, (str, bool, int, float)) else str(value)
    return clean
