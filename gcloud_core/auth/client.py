"""
OAuth2 service-account client: JWT assertion -> token exchange -> cached token.
"""

import asyncio
import time
from pathlib import Path
from typing import Optional, Sequence, Union, TYPE_CHECKING

import httpx
from pydantic import ValidationError

from gcloud_core.auth.jwt_signer import JWTSigner
from gcloud_core.auth.token_cache import AccessTokenCache
from gcloud_core.errors import AuthHTTPError, AuthNetworkError, TokenParsingFailedError, TokenRequestFailedError
from gcloud_core.http.dispatcher import ResponseTooLarge, read_body
from gcloud_core.logging import get_logger
from gcloud_core.models import AccessToken, ServiceAccountCredentials, TokenResponse

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from gcloud_core.metrics import MetricsCollector

DEFAULT_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]
COMPUTE_SCOPES = ["https://www.googleapis.com/auth/compute"]
STORAGE_SCOPES = ["https://www.googleapis.com/auth/devstorage.full_control"]

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEFAULT_TOKEN_TIMEOUT = 30.0
MAX_TOKEN_RESPONSE_BYTES = 1024 * 1024


class AuthClient:
    """Issues access tokens for one service account.

    All token state transitions go through ``_lock``: concurrent callers that
    find the cache stale queue on the lock, and whoever acquires it after a
    refresh re-reads the cache instead of exchanging again.
    """

    def __init__(
        self,
        credentials: ServiceAccountCredentials,
        *,
        scopes: Sequence[str] = DEFAULT_SCOPES,
        http_client: Optional[httpx.AsyncClient] = None,
        token_timeout: float = DEFAULT_TOKEN_TIMEOUT,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.credentials = credentials
        self.scopes = list(scopes)
        self.token_timeout = token_timeout
        self.metrics = metrics
        self.logger = get_logger("gcloud.auth")

        self.signer = JWTSigner(credentials, self.scopes)
        self.token_cache = AccessTokenCache()
        self._lock = asyncio.Lock()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=token_timeout)

    @classmethod
    def from_file(cls, credentials_path: Union[str, Path], **kwargs) -> "AuthClient":
        """Create a client from a service-account JSON key file."""
        return cls(ServiceAccountCredentials.from_file(credentials_path), **kwargs)

    @property
    def project_id(self) -> str:
        return self.credentials.project_id

    @property
    def service_account_email(self) -> str:
        return self.credentials.client_email

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this auth client created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AuthClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def get_access_token(self) -> AccessToken:
        """Return a valid access token, refreshing it if missing or near expiry."""
        token = self.token_cache.get_valid()
        if token is not None:
            return token

        async with self._lock:
            token = self.token_cache.get_valid()
            if token is not None:
                return token
            return await self._refresh_locked()

    async def refresh_token(self) -> AccessToken:
        """Force a token exchange regardless of the cached token's expiry."""
        async with self._lock:
            return await self._refresh_locked()

    async def _refresh_locked(self) -> AccessToken:
        start = time.perf_counter()
        try:
            assertion = self.signer.sign()
            token = await self._exchange(assertion)
        except Exception:
            self._record_refresh("failure")
            raise

        self.token_cache.store(token)
        self._record_refresh("success")
        self.logger.info(
            "Access token refreshed",
            service_account=self.service_account_email,
            expires_in=round(token.expires_at - time.time()),
            duration=round(time.perf_counter() - start, 3),
        )
        return token

    async def _exchange(self, assertion: str) -> AccessToken:
        token_uri = self.credentials.token_uri
        try:
            status_code, body = await self._post_assertion(token_uri, assertion)
        except httpx.TimeoutException as e:
            raise AuthNetworkError(
                f"Timed out contacting token endpoint: {e}",
                details={"token_uri": token_uri, "timeout": self.token_timeout}
            ) from e
        except httpx.TransportError as e:
            raise AuthNetworkError(
                f"Failed to connect to token endpoint: {e}",
                details={"token_uri": token_uri}
            ) from e
        except httpx.RequestError as e:
            raise AuthNetworkError(
                f"Token request failed: {e}",
                details={"token_uri": token_uri}
            ) from e
        except ResponseTooLarge as e:
            raise TokenRequestFailedError(str(e), details={"token_uri": token_uri}) from e

        if status_code != 200:
            message = body.decode("utf-8", errors="replace") or "Unknown error"
            self.logger.warning("Token endpoint rejected assertion", status_code=status_code, token_uri=token_uri)
            raise AuthHTTPError(status_code, message)

        try:
            payload = TokenResponse.model_validate_json(body)
        except ValidationError as e:
            raise TokenParsingFailedError(f"Failed to parse token response: {e}") from e

        return AccessToken(
            token=payload.access_token,
            token_type=payload.token_type,
            expires_at=time.time() + payload.expires_in,
        )

    async def _post_assertion(self, token_uri: str, assertion: str):
        request = self._client.build_request(
            "POST",
            token_uri,
            data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=self.token_timeout,
        )
        response = await self._client.send(request, stream=True)
        try:
            body = await read_body(response, MAX_TOKEN_RESPONSE_BYTES)
        finally:
            await response.aclose()
        return response.status_code, body

    def _record_refresh(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.record_token_refresh(status)
