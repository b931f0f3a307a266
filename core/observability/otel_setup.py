"""
Optional OpenTelemetry tracing for dispatched actions.

The SDK is an optional extra (`pip install integration-hub[otel]`). Without
it setup_otel() returns None and the dispatcher runs untraced. Spans are
exported over OTLP only when OTEL_EXPORTER_OTLP_ENDPOINT is set.
"""
from __future__ import annotations
from typing import Any, Optional
import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "integration-hub"


def setup_otel(service_name: Optional[str] = None, endpoint: Optional[str] = None):
    """Install a tracer provider and return a tracer, or None without the SDK."""
    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", DEFAULT_SERVICE_NAME)
    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
    except ImportError:
        logger.debug("opentelemetry-sdk not installed; action tracing disabled")
        return None

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    otlp_endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
        logger.info("Exporting action spans to %s", otlp_endpoint)

    trace.set_tracer_provider(provider)
    return trace.get_tracer(service_name)


def create_action_span(tracer: Any, integration_id: str, action: str):
    """Span named integration.<id>.<action> around one execute call."""
    return tracer.start_as_current_span(
        f"integration.{integration_id}.{action}",
        attributes={
            "integration.id": integration_id,
            "integration.action": action,
        },
    )
