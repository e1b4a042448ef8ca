"""
Core building blocks for talking to Google Cloud REST APIs.

This package aggregates the cross-cutting pieces every API wrapper needs:

- auth: Service-account JWT signing, token exchange and token caching
- http: Authenticated request dispatch with retry, backoff and pagination
- circuit_breaker: Failure isolation for flaky dependencies
- caching: In-memory TTL cache with eviction policies and response caching
- config: Client settings via pydantic-settings plus tuned presets
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types

Resource-specific wrappers belong in their own packages layered on top.
"""

from gcloud_core.auth import AuthClient, DEFAULT_SCOPES
from gcloud_core.caching import CachedHTTPClient, InMemoryCache, ResponseCache
from gcloud_core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerHTTPClient,
    CircuitBreakerRegistry,
    CircuitBreakerState,
    get_circuit_breaker,
)
from gcloud_core.config import CacheConfig, CircuitBreakerConfig, ClientConfig, ClientSettings, RetryConfig
from gcloud_core.http import GoogleCloudHTTPClient, HTTPDispatcher, paginate
from gcloud_core.models import AccessToken, APIResponse, EmptyResponse, ServiceAccountCredentials

__version__ = "1.0.0"

__all__ = [
    "AccessToken",
    "APIResponse",
    "AuthClient",
    "CacheConfig",
    "CachedHTTPClient",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerHTTPClient",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "ClientConfig",
    "ClientSettings",
    "DEFAULT_SCOPES",
    "EmptyResponse",
    "GoogleCloudHTTPClient",
    "HTTPDispatcher",
    "InMemoryCache",
    "ResponseCache",
    "RetryConfig",
    "ServiceAccountCredentials",
    "get_circuit_breaker",
    "paginate",
]
