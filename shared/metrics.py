"""
Shared metrics configuration for the judicial cache layer.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager


class MetricsCollector:
    """Centralized Prometheus metrics collector for cache consumers.

    Metrics are only registered when a registry is supplied, so several
    collectors can coexist in one process (tests, multiple apps).
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up cache metrics for the service."""

        self._metrics["service_info"] = Info(
            "cache_service_info",
            "Cache consumer information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Total cache lookups by tier and result",
            ["namespace", "tier", "result"],
            registry=self.registry
        )

        self._metrics["cache_promotions_total"] = Counter(
            "cache_promotions_total",
            "Total promotions from tier 2 into tier 1",
            ["namespace"],
            registry=self.registry
        )

        self._metrics["cache_evictions_total"] = Counter(
            "cache_evictions_total",
            "Total tier 1 evictions",
            ["namespace"],
            registry=self.registry
        )

        self._metrics["cache_compute_total"] = Counter(
            "cache_compute_total",
            "Total compute callback invocations on full misses",
            ["namespace"],
            registry=self.registry
        )

        self._metrics["cache_background_refresh_total"] = Counter(
            "cache_background_refresh_total",
            "Total stale-while-revalidate background refreshes",
            ["namespace", "result"],
            registry=self.registry
        )

        self._metrics["cache_lookup_duration_seconds"] = Histogram(
            "cache_lookup_duration_seconds",
            "Cache lookup duration in seconds",
            ["namespace", "tier"],
            registry=self.registry
        )

        self._metrics["cache_tier1_entries"] = Gauge(
            "cache_tier1_entries",
            "Entries currently held in tier 1",
            ["namespace"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            with self._lock:
                self._metrics[metric_name].labels(**labels).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
