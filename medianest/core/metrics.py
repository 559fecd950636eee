"""
Prometheus metrics behind an injectable sink.

Components receive a ``MetricsSink`` at construction instead of
calling module-level record helpers, so each one can be tested in
isolation (``NullMetrics``) or inspected through its own registry
(``PrometheusMetrics``).

Usage:
    Build one ``PrometheusMetrics`` per process, pass it to every
    service, and serve ``metrics.generate()`` on ``/metrics``.
"""

from __future__ import annotations

import logging
from typing import Protocol

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

_NAMESPACE = "medianest"

# name -> help text
_COUNTERS: dict[str, str] = {
    "items_issued": "Items registered and enqueued.",
    "publish_attempts": "Broker publish attempts.",
    "publish_retries": "Broker publish attempts that were retried.",
    "publish_failures": "Jobs that exhausted the publish retry budget.",
    "publish_timeouts": "Publish attempts still running after PUBLISH_TIMEOUT.",
    "cache_hits": "Status-cache hits.",
    "cache_misses": "Status-cache misses.",
    "cache_errors": "Status-cache operations that failed and degraded.",
    "cache_evictions": "Entries evicted on read because they were near expiry.",
    "status_anomalies": "Terminal statuses overwritten by another terminal status.",
    "results_rejected": "Worker result entries dropped by validation.",
}

_HISTOGRAMS: dict[str, str] = {
    "publish_seconds": "Wall-clock time of a successful publish, retries included.",
}


class MetricsSink(Protocol):
    """Minimal interface components record metrics through."""

    def incr(self, name: str, amount: float = 1.0) -> None:
        """Increment counter *name* by *amount*."""

    def observe(self, name: str, value: float) -> None:
        """Record *value* in histogram *name*."""


class NullMetrics:
    """Sink that drops everything (default for components)."""

    def incr(self, name: str, amount: float = 1.0) -> None:
        return None

    def observe(self, name: str, value: float) -> None:
        return None


class PrometheusMetrics:
    """``prometheus_client`` implementation on a dedicated registry.

    A dedicated registry keeps instances independent (one per test,
    one per process) and avoids default-registry conflicts.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._counters = {
            name: Counter(
                name,
                help_text,
                namespace=_NAMESPACE,
                registry=self.registry,
            )
            for name, help_text in _COUNTERS.items()
        }
        self._histograms = {
            name: Histogram(
                name,
                help_text,
                namespace=_NAMESPACE,
                registry=self.registry,
            )
            for name, help_text in _HISTOGRAMS.items()
        }

    def incr(self, name: str, amount: float = 1.0) -> None:
        """Increment a known counter; unknown names are logged."""
        counter = self._counters.get(name)
        if counter is None:
            logger.debug("Ignoring unknown counter %s", name)
            return
        counter.inc(amount)

    def observe(self, name: str, value: float) -> None:
        """Observe a known histogram; unknown names are logged."""
        histogram = self._histograms.get(name)
        if histogram is None:
            logger.debug("Ignoring unknown histogram %s", name)
            return
        histogram.observe(value)

    def value(self, name: str) -> float:
        """Current value of counter *name* (0 when unknown)."""
        sample = self.registry.get_sample_value(f"{_NAMESPACE}_{name}_total")
        return sample or 0.0

    def generate(self) -> bytes:
        """Render Prometheus exposition format.

        Returns:
            UTF-8 bytes ready to be served on ``/metrics``.
        """
        return generate_latest(self.registry)
