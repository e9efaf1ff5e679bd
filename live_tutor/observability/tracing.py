"""
OpenTelemetry tracing setup for the live tutor service.

Exports over OTLP HTTP/protobuf when OTEL_EXPORTER_OTLP_ENDPOINT is set,
otherwise to the console. Without explicit headers the exporter reads
OTEL_EXPORTER_OTLP_HEADERS itself.
"""
import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

_tracer_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    endpoint: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> TracerProvider:
    global _tracer_provider

    endpoint = endpoint if endpoint is not None else os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", "")

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if endpoint:
        traces_url = f"{endpoint.rstrip('/')}/v1/traces"
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_url, headers=headers))
        )
        logger.info(f"OTLP tracing configured: {traces_url}")
    else:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.warning("No OTLP endpoint configured, using console span exporter")

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    global _tracer_provider
    if _tracer_provider:
        _tracer_provider.shutdown()
        _tracer_provider = None
