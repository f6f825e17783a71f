"""
OpenTelemetry Setup

Production observability:
- Traces for outbound provider calls (one span per call, attempts inside)
- Traces for webhook dispatch (one span per inbound event)
Without ``setup_otel`` the API-level tracer is a no-op.
"""
from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Iterator, Optional
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

TRACER_NAME = "coaching.integrations"


def setup_otel(
    service_name: str = "coaching-integrations",
    endpoint: Optional[str] = None,
):
    """Initialize OpenTelemetry, exporting over OTLP when an endpoint is set."""
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    otlp_endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    return trace.get_tracer(service_name)


@contextmanager
def provider_span(name: str, provider: str, **attributes: Any) -> Iterator[Any]:
    """Span around a provider interaction, e.g. ``provider_span("oauth.refresh", "cal")``."""
    tracer = trace.get_tracer(TRACER_NAME)
    attrs = {"integration.provider": provider}
    attrs.update({f"integration.{k}": v for k, v in attributes.items() if v is not None})
    with tracer.start_as_current_span(name, attributes=attrs) as span:
        yield span
