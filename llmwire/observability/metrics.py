"""
llmwire - Prometheus Metrics

Metrics exposed:
- llmwire_attempts_total: HTTP attempts by wire format, mode and outcome
- llmwire_retries_total: retries scheduled, by error kind
- llmwire_retry_delay_seconds: backoff delays actually waited
- llmwire_errors_total: classified failures surfaced to callers
- llmwire_stream_events_total: events produced by the stream reducer
- llmwire_request_duration_seconds: end-to-end call duration
- llmwire_time_to_first_event_seconds: stream open to first event
- llmwire_active_requests: calls in flight

Usage:
    from llmwire.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.record_attempt(wire_format="delta-json", streaming=True, outcome="success")

Tests pass their own CollectorRegistry to MetricsCollector.
"""

from typing import Dict, Optional, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from ..core.errors import ClassifiedError


def _bool_label(value: bool) -> str:
    return "true" if value else "false"


class MetricsCollector:
    """Metric families for one registry."""

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        self.info = Info(
            "llmwire",
            "llmwire client information",
            registry=registry,
        )
        from .. import __version__
        self.info.info({"version": __version__})

        self.attempts_total = Counter(
            "llmwire_attempts_total",
            "HTTP attempts made",
            labelnames=["wire_format", "streaming", "outcome"],
            registry=registry,
        )

        self.retries_total = Counter(
            "llmwire_retries_total",
            "Retries scheduled after a retryable failure",
            labelnames=["kind"],
            registry=registry,
        )

        self.retry_delay = Histogram(
            "llmwire_retry_delay_seconds",
            "Backoff delay before a retry",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 60.0, float("inf")),
            registry=registry,
        )

        self.errors_total = Counter(
            "llmwire_errors_total",
            "Classified errors surfaced to callers",
            labelnames=["kind", "category", "streaming"],
            registry=registry,
        )

        self.stream_events_total = Counter(
            "llmwire_stream_events_total",
            "Stream events produced",
            labelnames=["wire_format", "event_type"],
            registry=registry,
        )

        # Inference calls range from 100ms to minutes
        self.request_duration = Histogram(
            "llmwire_request_duration_seconds",
            "End-to-end call duration in seconds",
            labelnames=["streaming", "outcome"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, float("inf")),
            registry=registry,
        )

        self.time_to_first_event = Histogram(
            "llmwire_time_to_first_event_seconds",
            "Time from stream open to first event",
            labelnames=["wire_format"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")),
            registry=registry,
        )

        self.active_requests = Gauge(
            "llmwire_active_requests",
            "Calls currently in flight",
            labelnames=["streaming"],
            registry=registry,
        )

    def record_attempt(self, wire_format: str, streaming: bool, outcome: str):
        self.attempts_total.labels(
            wire_format=wire_format,
            streaming=_bool_label(streaming),
            outcome=outcome,
        ).inc()

    def record_retry(self, kind: str, delay_seconds: float):
        self.retries_total.labels(kind=kind).inc()
        self.retry_delay.observe(delay_seconds)

    def record_error(self, error: ClassifiedError, streaming: bool):
        self.errors_total.labels(
            kind=error.kind.value,
            category=error.category.value,
            streaming=_bool_label(streaming),
        ).inc()

    def record_stream_event(self, wire_format: str, event_type: str):
        self.stream_events_total.labels(
            wire_format=wire_format,
            event_type=event_type,
        ).inc()

    def record_request(self, streaming: bool, outcome: str, duration_seconds: float):
        self.request_duration.labels(
            streaming=_bool_label(streaming),
            outcome=outcome,
        ).observe(duration_seconds)

    def record_time_to_first_event(self, wire_format: str, seconds: float):
        self.time_to_first_event.labels(wire_format=wire_format).observe(seconds)

    def track_active_request(self, streaming: bool) -> "ActiveRequestTracker":
        return ActiveRequestTracker(self, streaming)


class ActiveRequestTracker:
    """Context manager for the in-flight gauge."""

    def __init__(self, collector: MetricsCollector, streaming: bool):
        self.collector = collector
        self.label = _bool_label(streaming)

    def __enter__(self):
        self.collector.active_requests.labels(streaming=self.label).inc()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.collector.active_requests.labels(streaming=self.label).dec()


_metrics_instance: Optional[MetricsCollector] = None
# one collector per registry; prometheus_client rejects duplicate names
_collectors: Dict[CollectorRegistry, MetricsCollector] = {}


def setup_metrics(registry: CollectorRegistry = REGISTRY) -> MetricsCollector:
    """
    Make the collector on `registry` the process-wide one.

    Safe to call repeatedly, and to switch back to a registry used before.
    """
    global _metrics_instance
    collector = _collectors.get(registry)
    if collector is None:
        collector = MetricsCollector(registry)
        _collectors[registry] = collector
    _metrics_instance = collector
    return collector


def get_metrics() -> MetricsCollector:
    """Process-wide collector, created on the default registry on first use."""
    if _metrics_instance is None:
        return setup_metrics()
    return _metrics_instance


def render_metrics(registry: Optional[CollectorRegistry] = None) -> Tuple[bytes, str]:
    """Prometheus exposition body and its content type."""
    if registry is None:
        registry = get_metrics().registry
    return generate_latest(registry), CONTENT_TYPE_LATEST


def metrics_endpoint(registry: Optional[CollectorRegistry] = None):
    """
    FastAPI response for a /metrics route.

    Usage:
        @app.get("/metrics")
        async def metrics():
            return metrics_endpoint()
    """
    from fastapi import Response

    content, media_type = render_metrics(registry)
    return Response(content=content, media_type=media_type)
