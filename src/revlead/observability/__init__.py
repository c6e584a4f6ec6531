"""Observability for revlead.

Provides structured logging with election context and Prometheus metrics.
"""

from revlead.observability.logging import LogContext, configure_logging
from revlead.observability.metrics import MetricsRegistry, get_metrics, metrics_registry

__all__ = [
    # Logging
    "configure_logging",
    "LogContext",
    # Metrics
    "MetricsRegistry",
    "get_metrics",
    "metrics_registry",
]
