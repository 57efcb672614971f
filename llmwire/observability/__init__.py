"""
llmwire - Observability Module

- Prometheus metrics (Counter, Histogram, Gauge)
- OpenTelemetry spans per HTTP attempt
- Structured JSON logging with context injection

Usage:
    from llmwire.observability import setup_logging, setup_tracing, get_metrics

    setup_logging(level="INFO")
    setup_tracing(console_export=True)
    metrics = get_metrics()
"""

from .metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    render_metrics,
    metrics_endpoint,
)
from .tracing import (
    TracingManager,
    get_tracer,
    setup_tracing,
)
from .logging import (
    StructuredLogger,
    get_logger,
    setup_logging,
    LogContext,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "setup_metrics",
    "render_metrics",
    "metrics_endpoint",
    # Tracing
    "TracingManager",
    "get_tracer",
    "setup_tracing",
    # Logging
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    "LogContext",
]
