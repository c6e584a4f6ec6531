"""Prometheus metrics for leader election.

Usage:
    from revlead.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.record_cycle("my-lock")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from revlead.config import settings

logger = logging.getLogger(__name__)


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    enabled: bool = True

    election_cycles_total: Any = None
    election_is_leader: Any = None
    election_terms_total: Any = None
    lock_store_errors_total: Any = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _registry: CollectorRegistry | None = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not self.enabled:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        self._registry = CollectorRegistry()

        self.election_cycles_total = Counter(
            "revlead_election_cycles_total",
            "Lease coordinator (re)starts",
            ["election_id"],
            registry=self._registry,
        )

        self.election_is_leader = Gauge(
            "revlead_election_is_leader",
            "1 while this instance holds the lease",
            ["election_id", "identity"],
            registry=self._registry,
        )

        self.election_terms_total = Counter(
            "revlead_election_terms_total",
            "Leadership terms started by this instance",
            ["election_id"],
            registry=self._registry,
        )

        self.lock_store_errors_total = Counter(
            "revlead_lock_store_errors_total",
            "Lock store failures seen by the coordinator",
            ["election_id", "kind"],
            registry=self._registry,
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def record_cycle(self, election_id: str) -> None:
        if self.election_cycles_total is not None:
            self.election_cycles_total.labels(election_id=election_id).inc()

    def record_leading(self, election_id: str, identity: str, leading: bool) -> None:
        if self.election_is_leader is None:
            return
        self.election_is_leader.labels(election_id=election_id, identity=identity).set(
            1 if leading else 0
        )
        if leading:
            self.election_terms_total.labels(election_id=election_id).inc()

    def record_store_error(self, election_id: str, kind: str) -> None:
        if self.lock_store_errors_total is not None:
            self.lock_store_errors_total.labels(election_id=election_id, kind=kind).inc()

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = MetricsRegistry(enabled=settings.enable_metrics)


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry
