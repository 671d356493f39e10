"""
Shared metrics configuration for the membership POS backend.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional, Sequence

NAMESPACE = "pos"

# Datasheet calls are throttled to well under a few per second; buckets cover queueing delays too.
DATASHEET_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """Prometheus metrics for one service instance."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Each collector owns a registry so several service instances can coexist in one process.
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        info = Info("service", "Service information", namespace=NAMESPACE, registry=self.registry)
        info.info({"service": self.service_name, "version": "1.0.0"})
        self._metrics["service_info"] = info

        self._counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status_code"])
        self._histogram("http_request_duration_seconds", "HTTP request duration in seconds", ["method", "endpoint"])
        self._counter("health_check_total", "Total health check requests", ["status"])
        self._counter("errors_total", "Errors by type", ["error_type", "service"])
        self._counter("business_events_total", "Member, balance and stock events", ["event_type", "service"])

        if self.service_name == "membership":
            self._setup_membership_metrics()

    def _setup_membership_metrics(self):
        """Datasheet call governor and read cache."""
        self._counter("datasheet_calls_total", "Governed datasheet calls by outcome", ["operation", "outcome"])
        self._histogram(
            "datasheet_call_duration_seconds",
            "Governed datasheet call duration in seconds",
            ["operation"],
            buckets=DATASHEET_BUCKETS,
        )
        self._metrics["governor_queue_depth"] = Gauge(
            "governor_queue_depth",
            "Calls waiting in the datasheet call governor",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._counter("cache_events_total", "Read cache hits, misses, expiries and invalidations", ["event"])

    def _counter(self, name: str, documentation: str, labels: Sequence[str]):
        self._metrics[name] = Counter(name, documentation, labels, namespace=NAMESPACE, registry=self.registry)

    def _histogram(self, name: str, documentation: str, labels: Sequence[str], buckets=Histogram.DEFAULT_BUCKETS):
        self._metrics[name] = Histogram(
            name, documentation, labels, namespace=NAMESPACE, buckets=buckets, registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method, endpoint=endpoint).observe(duration)

    def record_health_check(self, status: str):
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        self._metrics["errors_total"].labels(error_type=error_type, service=service or self.service_name).inc()

    def record_business_event(self, event_type: str, service: Optional[str] = None):
        """Count a completed domain event such as ``recharge`` or ``member_created``."""
        self._metrics["business_events_total"].labels(event_type=event_type, service=service or self.service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric; unknown names are ignored."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
