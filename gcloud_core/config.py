"""
Configuration management for Google Cloud clients.

Environment-driven settings live in ``ClientSettings``; the immutable
per-component configs (retry, circuit breaker, cache) are defined next to
the components that use them and re-exported here.
"""

from dataclasses import dataclass, replace
from typing import ClassVar, List, Optional, TYPE_CHECKING

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gcloud_core.auth.client import AuthClient
from gcloud_core.caching.ttl_cache import CacheConfig
from gcloud_core.circuit_breaker import CircuitBreakerConfig
from gcloud_core.errors import InvalidCredentialsError
from gcloud_core.http.client import GoogleCloudHTTPClient
from gcloud_core.http.dispatcher import DEFAULT_MAX_RESPONSE_BYTES, DEFAULT_REQUEST_TIMEOUT
from gcloud_core.retry import RetryConfig

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from gcloud_core.metrics import MetricsCollector

__all__ = [
    "CacheConfig",
    "CircuitBreakerConfig",
    "ClientConfig",
    "ClientSettings",
    "RetryConfig",
    "get_settings",
]


class ClientSettings(BaseSettings):
    """Client settings read from ``GOOGLE_CLOUD_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_CLOUD_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Credentials
    credentials_file: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_APPLICATION_CREDENTIALS", "GOOGLE_CLOUD_CREDENTIALS_FILE"),
    )
    scopes: List[str] = Field(default_factory=lambda: ["https://www.googleapis.com/auth/cloud-platform"])
    token_timeout: float = 30.0

    # HTTP
    base_url: str = "https://www.googleapis.com"
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES

    # Retry
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    retry_jitter_factor: float = Field(default=0.2, ge=0, le=1)

    # Observability
    log_level: str = "info"

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            jitter_factor=self.retry_jitter_factor,
        )

    def create_auth_client(self, **kwargs) -> AuthClient:
        """Build an ``AuthClient`` from ``credentials_file``."""
        if not self.credentials_file:
            raise InvalidCredentialsError(
                "No credentials file configured; set GOOGLE_APPLICATION_CREDENTIALS"
            )
        kwargs.setdefault("scopes", self.scopes)
        kwargs.setdefault("token_timeout", self.token_timeout)
        return AuthClient.from_file(self.credentials_file, **kwargs)

    def create_http_client(self,
                           auth_client: AuthClient,
                           *,
                           client_config: Optional["ClientConfig"] = None,
                           metrics: Optional["MetricsCollector"] = None,
                           **kwargs) -> GoogleCloudHTTPClient:
        """Build a retrying HTTP client; ``client_config`` overrides timeout and retry settings."""
        if client_config is not None:
            kwargs.setdefault("retry_config", client_config.retry)
            kwargs.setdefault("request_timeout", client_config.request_timeout)
        return GoogleCloudHTTPClient(
            auth_client,
            kwargs.pop("base_url", self.base_url),
            retry_config=kwargs.pop("retry_config", self.retry_config()),
            request_timeout=kwargs.pop("request_timeout", self.request_timeout),
            max_response_bytes=kwargs.pop("max_response_bytes", self.max_response_bytes),
            metrics=metrics,
            **kwargs,
        )


@dataclass(frozen=True)
class ClientConfig:
    """Request timeout and retry policy for one API client."""

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    retry: RetryConfig = RetryConfig.DEFAULT

    DEFAULT: ClassVar["ClientConfig"]
    CONSERVATIVE: ClassVar["ClientConfig"]
    AGGRESSIVE: ClassVar["ClientConfig"]
    BATCH: ClassVar["ClientConfig"]

    def with_request_timeout(self, timeout: float) -> "ClientConfig":
        return replace(self, request_timeout=timeout)

    def with_retry(self, retry: RetryConfig) -> "ClientConfig":
        return replace(self, retry=retry)

    def with_no_retries(self) -> "ClientConfig":
        return replace(self, retry=RetryConfig.NONE)


ClientConfig.DEFAULT = ClientConfig()
ClientConfig.CONSERVATIVE = ClientConfig(request_timeout=120.0, retry=RetryConfig.CONSERVATIVE)
ClientConfig.AGGRESSIVE = ClientConfig(request_timeout=30.0, retry=RetryConfig.AGGRESSIVE)
ClientConfig.BATCH = ClientConfig(request_timeout=300.0, retry=RetryConfig.BATCH)


def get_settings(**overrides) -> ClientSettings:
    """Get client settings, applying keyword overrides on top of the environment."""
    return ClientSettings(**overrides)
