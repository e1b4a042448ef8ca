"""
Unit tests for client-side Prometheus metrics.
"""

from prometheus_client import CollectorRegistry, generate_latest

from gcloud_core.metrics import MetricsCollector, get_metrics_collector


class TestMetricsCollector:
    """Test cases for MetricsCollector."""

    def test_collectors_are_isolated(self):
        first = MetricsCollector("a")
        second = MetricsCollector("b")

        first.record_retry("HTTP_ERROR")

        assert first.sample("gcloud_api_retries_total", {"reason": "HTTP_ERROR"}) == 1.0
        assert second.sample("gcloud_api_retries_total", {"reason": "HTTP_ERROR"}) is None

    def test_api_request_histogram(self):
        metrics = get_metrics_collector("svc", CollectorRegistry())

        metrics.record_api_request("GET", "200", 0.25)

        assert metrics.sample("gcloud_api_requests_total", {"method": "GET", "status_code": "200"}) == 1.0
        assert metrics.sample("gcloud_api_request_duration_seconds_count", {"method": "GET"}) == 1.0
        assert metrics.sample("gcloud_api_request_duration_seconds_sum", {"method": "GET"}) == 0.25

    def test_circuit_state_gauge(self):
        metrics = MetricsCollector("svc")

        metrics.record_circuit_state("storage", "half_open")

        assert metrics.sample("gcloud_circuit_breaker_state", {"name": "storage"}) == 1.0

    def test_exposition_includes_client_info(self):
        metrics = MetricsCollector("svc")

        output = generate_latest(metrics.registry).decode()

        assert 'gcloud_client_info{service="svc",version="1.0.0"} 1.0' in output
        assert metrics.get_metric("cache_events_total") is not None
