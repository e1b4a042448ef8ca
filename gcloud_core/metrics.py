"""
Prometheus metrics for gcloud_core clients.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class MetricsCollector:
    """Centralized metrics collector for one client process.

    Each collector owns a private ``CollectorRegistry`` unless one is passed
    in, so several collectors can coexist in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up client-side metrics."""

        self._metrics["client_info"] = Info(
            "gcloud_client",
            "Client information",
            registry=self.registry
        )
        self._metrics["client_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["api_requests_total"] = Counter(
            "gcloud_api_requests_total",
            "Total Google Cloud API requests by outcome",
            ["method", "status_code"],
            registry=self.registry
        )

        self._metrics["api_request_duration_seconds"] = Histogram(
            "gcloud_api_request_duration_seconds",
            "Google Cloud API request duration in seconds",
            ["method"],
            registry=self.registry
        )

        self._metrics["api_retries_total"] = Counter(
            "gcloud_api_retries_total",
            "Total retried API requests",
            ["reason"],
            registry=self.registry
        )

        # Auth metrics
        self._metrics["token_refresh_total"] = Counter(
            "gcloud_token_refresh_total",
            "Total access token refreshes",
            ["status"],
            registry=self.registry
        )

        # Circuit breaker metrics
        self._metrics["circuit_breaker_state"] = Gauge(
            "gcloud_circuit_breaker_state",
            "Circuit breaker state (0=closed, 1=half_open, 2=open)",
            ["name"],
            registry=self.registry
        )

        self._metrics["circuit_breaker_rejections_total"] = Counter(
            "gcloud_circuit_breaker_rejections_total",
            "Total calls rejected by an open circuit",
            ["name"],
            registry=self.registry
        )

        # Cache metrics
        self._metrics["cache_events_total"] = Counter(
            "gcloud_cache_events_total",
            "Cache hits, misses, evictions and expirations",
            ["cache", "event"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_api_request(self, method: str, status_code: str, duration: float):
        """Record one dispatched API request."""
        self._metrics["api_requests_total"].labels(method=method, status_code=status_code).inc()
        self._metrics["api_request_duration_seconds"].labels(method=method).observe(duration)

    def record_retry(self, reason: str):
        self._metrics["api_retries_total"].labels(reason=reason).inc()

    def record_token_refresh(self, status: str):
        self._metrics["token_refresh_total"].labels(status=status).inc()

    def record_circuit_state(self, name: str, state: str):
        self._metrics["circuit_breaker_state"].labels(name=name).set(CIRCUIT_STATE_VALUES.get(state, -1))

    def record_circuit_rejection(self, name: str):
        self._metrics["circuit_breaker_rejections_total"].labels(name=name).inc()

    def record_cache_event(self, cache: str, event: str):
        self._metrics["cache_events_total"].labels(cache=cache, event=event).inc()

    def sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read the current value of a sample from this collector's registry."""
        return self.registry.get_sample_value(name, labels or {})


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a client process."""
    return MetricsCollector(service_name, registry)
