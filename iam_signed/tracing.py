"""OpenTelemetry tracing for iam_signed.

Deliveries are wrapped in spans from the global tracer provider. Applications
that already configure OpenTelemetry get the spans in their traces; others
can call init_tracing() to set up:
- AWS X-Ray integration via OTLP exporter
- Automatic httpx instrumentation for outbound HTTP calls
"""

import os

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.propagators.aws import AwsXRayPropagator
from opentelemetry.sdk.extension.aws.trace import AwsXRayIdGenerator
from opentelemetry.propagate import set_global_textmap

from .config import config

TRACER_NAME = "iam_signed"

# Global tracer instance
_tracer: trace.Tracer | None = None
_initialized = False


def init_tracing(
    service_name: str = "iam-signed",
    otlp_endpoint: str | None = None,
    enable_console_export: bool = False,
) -> trace.Tracer:
    """Initialize OpenTelemetry tracing.

    This installs a global tracer provider, so only call it from an
    application entry point.

    Args:
        service_name: Name of the service for tracing
        otlp_endpoint: OTLP collector endpoint (e.g., "http://localhost:4317")
                      If None, uses the configured OTEL_EXPORTER_OTLP_ENDPOINT
        enable_console_export: If True, also export spans to console (for debugging)

    Returns:
        Configured tracer instance
    """
    global _tracer, _initialized

    if _initialized and _tracer is not None:
        return _tracer

    resource = Resource.create({
        SERVICE_NAME: service_name,
        "service.version": "0.1.0",
        "deployment.environment": os.getenv("ENVIRONMENT", "development"),
    })

    provider = TracerProvider(
        resource=resource,
        id_generator=AwsXRayIdGenerator(),
    )

    set_global_textmap(AwsXRayPropagator())

    endpoint = otlp_endpoint or config.otel_endpoint
    if endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    if enable_console_export or config.otel_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)

    _tracer = trace.get_tracer(TRACER_NAME)
    _initialized = True

    _instrument_httpx()

    return _tracer


def _instrument_httpx() -> None:
    """Instrument httpx for automatic HTTP request tracing."""
    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    except ImportError:
        # opentelemetry-instrumentation-httpx is an optional extra
        return
    HTTPXClientInstrumentor().instrument()


def get_tracer() -> trace.Tracer:
    """Get the tracer used for delivery spans.

    Returns:
        The tracer set up by init_tracing(), otherwise a tracer from whatever
        provider the application installed (a no-op one by default)
    """
    if _tracer is None:
        return trace.get_tracer(TRACER_NAME)
    return _tracer


def add_delivery_span_attributes(
    span: trace.Span,
    service: str | None = None,
    method: str | None = None,
    url: str | None = None,
    status_code: int | None = None,
) -> None:
    """Add request attributes to a delivery span.

    Args:
        span: The span to add attributes to
        service: AWS service identifier used for signing
        method: HTTP method
        url: Endpoint URL
        status_code: HTTP status code of the response
    """
    if service:
        span.set_attribute("aws.service", service)
    if method:
        span.set_attribute("http.method", method)
    if url:
        span.set_attribute("http.url", url)
    if status_code is not None:
        span.set_attribute("http.status_code", status_code)
