"""
Shared fixtures for gcloud_core tests.
"""

import pytest
from prometheus_client import CollectorRegistry

from gcloud_core.auth.client import AuthClient
from gcloud_core.http.client import GoogleCloudHTTPClient
from gcloud_core.metrics import MetricsCollector
from gcloud_core.retry import RetryConfig
from gcloud_core.test_helpers import TEST_BASE_URL, MockGoogleAPI, create_credentials


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def credentials():
    """Service-account credentials backed by a freshly generated RSA key."""
    return create_credentials()


@pytest.fixture
def metrics():
    return MetricsCollector("gcloud-core-tests", registry=CollectorRegistry())


@pytest.fixture
def mock_api():
    return MockGoogleAPI()


@pytest.fixture
def auth_client(credentials, mock_api, metrics):
    return AuthClient(credentials, http_client=mock_api.client(), metrics=metrics)


@pytest.fixture
def fast_retry():
    """Retry config with zero delays so tests never sleep."""
    return RetryConfig(max_retries=3, base_delay=0.0, max_delay=0.0, jitter_factor=0.0)


@pytest.fixture
def api_client(auth_client, mock_api, fast_retry, metrics):
    return GoogleCloudHTTPClient(
        auth_client,
        TEST_BASE_URL,
        retry_config=fast_retry,
        http_client=mock_api.client(),
        metrics=metrics,
    )
