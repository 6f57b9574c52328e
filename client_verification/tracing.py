"""OpenTelemetry tracing for verification requests and results.

The producer stamps outgoing requests with W3C ``traceparent`` headers; the
worker continues that trace when it handles the matching result message, so
one client's verification shows up as a single trace.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional

from opentelemetry import context, trace  # type: ignore
from opentelemetry.propagate import get_global_textmap, inject, set_global_textmap  # type: ignore
from opentelemetry.sdk.resources import Resource  # type: ignore
from opentelemetry.sdk.trace import TracerProvider  # type: ignore
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor  # type: ignore
from opentelemetry.trace import Span, Tracer  # type: ignore
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator  # type: ignore

DEFAULT_SERVICE_NAME = "client-verification"


def start_tracing(service_name: str = DEFAULT_SERVICE_NAME) -> Tracer:
    """Install a console-exporting TracerProvider and the tracecontext propagator."""
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    set_global_textmap(TraceContextTextMapPropagator())
    return trace.get_tracer(service_name)


def get_tracer(service_name: str = DEFAULT_SERVICE_NAME) -> Tracer:
    return trace.get_tracer(service_name)


def inject_headers(headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Return a copy of ``headers`` carrying the current trace context."""
    carrier: Dict[str, str] = dict(headers or {})
    inject(carrier)
    return carrier


def _as_carrier(headers: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    # AMQP header values may arrive as bytes
    carrier: Dict[str, str] = {}
    for key, value in (headers or {}).items():
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        carrier[str(key)] = value if isinstance(value, str) else str(value)
    return carrier


def extract_context_from_headers(headers: Optional[Mapping[str, Any]]) -> context.Context:
    """Return the trace context carried in message headers (empty if none)."""
    return get_global_textmap().extract(_as_carrier(headers))


@contextmanager
def span_from_headers(tracer: Tracer, name: str, headers: Optional[Mapping[str, Any]]) -> Iterator[Span]:
    """Open span ``name`` as a child of the trace found in ``headers``."""
    token = context.attach(extract_context_from_headers(headers))
    try:
        with tracer.start_as_current_span(name) as span:
            yield span
    finally:
        context.detach(token)
