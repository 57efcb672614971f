"""
llmwire - OpenTelemetry Tracing

One CLIENT span per HTTP attempt, with W3C trace context injected into
the outgoing headers.

llmwire only uses the OpenTelemetry API unless setup_tracing() is
called; without a configured provider the spans are no-ops.

Usage:
    from llmwire.observability.tracing import setup_tracing

    # Export to console while debugging
    setup_tracing(console_export=True)

    # Or collect spans in tests
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
    exporter = InMemorySpanExporter()
    setup_tracing(exporter=exporter)
"""

import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.propagate import inject
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import SpanKind, Status, StatusCode

from .. import config
from ..core.errors import ClassifiedError


TRACER_NAME = "llmwire"


class TracingManager:
    """
    Owns a TracerProvider and the tracer llmwire spans are created on.

    The provider is only installed globally when set_global=True, so a
    host application's own provider is left alone by default.
    """

    def __init__(
        self,
        service_name: str = "llmwire",
        exporter: Optional[SpanExporter] = None,
        console_export: bool = False,
        set_global: bool = False,
    ):
        from .. import __version__

        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: __version__,
        })
        self.provider = TracerProvider(resource=resource)

        if exporter is not None:
            self.provider.add_span_processor(SimpleSpanProcessor(exporter))

        if console_export:
            self.provider.add_span_processor(
                SimpleSpanProcessor(ConsoleSpanExporter())
            )

        if set_global:
            trace.set_tracer_provider(self.provider)

        self.tracer = self.provider.get_tracer(TRACER_NAME, __version__)

    def get_tracer(self) -> trace.Tracer:
        return self.tracer

    def shutdown(self):
        self.provider.shutdown()


_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "llmwire",
    exporter: Optional[SpanExporter] = None,
    console_export: Optional[bool] = None,
    set_global: bool = False,
) -> TracingManager:
    """
    Configure the tracer used by engines that were not given one.

    Args:
        service_name: service.name resource attribute
        exporter: Span exporter (e.g. InMemorySpanExporter in tests)
        console_export: Print spans to stdout; defaults to OTEL_CONSOLE_EXPORT
        set_global: Also install the provider as the global one
    """
    global _tracing_instance

    if console_export is None:
        console_export = config.is_truthy(os.getenv("OTEL_CONSOLE_EXPORT"))

    if _tracing_instance is not None:
        _tracing_instance.shutdown()
    _tracing_instance = TracingManager(
        service_name=service_name,
        exporter=exporter,
        console_export=console_export,
        set_global=set_global,
    )
    return _tracing_instance


def reset_tracing():
    """Drop the configured manager (for testing)."""
    global _tracing_instance
    if _tracing_instance is not None:
        _tracing_instance.shutdown()
    _tracing_instance = None


def get_tracer() -> trace.Tracer:
    """
    The configured llmwire tracer, or the global API tracer.

    The global one is a no-op until the application installs a provider.
    """
    if _tracing_instance is not None:
        return _tracing_instance.get_tracer()
    return trace.get_tracer(TRACER_NAME)


def inject_trace_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Add traceparent (and baggage) for the current span to headers."""
    inject(headers)
    return headers


@contextmanager
def attempt_span(
    tracer: trace.Tracer,
    name: str,
    attributes: Optional[Dict[str, Any]] = None,
) -> Iterator[trace.Span]:
    """
    CLIENT span around one HTTP attempt.

    Exceptions are recorded by the span itself; outcomes that are not
    exceptions are recorded with record_attempt_outcome().
    """
    with tracer.start_as_current_span(
        name,
        kind=SpanKind.CLIENT,
        attributes={k: v for k, v in (attributes or {}).items() if v is not None},
    ) as span:
        yield span


def record_attempt_outcome(
    span: trace.Span,
    status: Optional[int] = None,
    error: Optional[ClassifiedError] = None,
):
    if status is not None:
        span.set_attribute("http.response.status_code", status)
    if error is None:
        span.set_status(Status(StatusCode.OK))
        return
    span.set_attribute("llmwire.error.kind", error.kind.value)
    span.set_attribute("llmwire.error.retryable", error.retryable)
    span.set_status(Status(StatusCode.ERROR, error.message))
