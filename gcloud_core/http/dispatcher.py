"""
Single authenticated request against a Google Cloud REST API.

The dispatcher owns one attempt: token lookup, JSON encoding, the bounded
body read, GCP error-envelope parsing and response decoding. Retrying is the
caller's business (see ``gcloud_core.http.client``).
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING
from urllib.parse import quote

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from gcloud_core.errors import (
    DecodingError,
    EncodingError,
    HTTPStatusError,
    InvalidResponseError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
)
from gcloud_core.logging import get_logger
from gcloud_core.models import APIResponse, EmptyResponse, GoogleErrorResponse

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from gcloud_core.auth.client import AuthClient
    from gcloud_core.metrics import MetricsCollector

DEFAULT_MAX_RESPONSE_BYTES = 10 * 1024 * 1024
DEFAULT_REQUEST_TIMEOUT = 60.0

# Characters left unescaped in query keys and values; '&', '=' and '+' are escaped.
_QUERY_SAFE = "-._~!$'()*,;:@/?"

_ANY_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)


class ResponseTooLarge(Exception):
    """Raised by ``read_body`` when a body exceeds its byte limit."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Response body exceeds {limit} bytes")


async def read_body(response: httpx.Response, limit: int) -> bytes:
    """Read a streamed response body, refusing to buffer more than ``limit`` bytes."""
    chunks = []
    received = 0
    async for chunk in response.aiter_bytes():
        received += len(chunk)
        if received > limit:
            raise ResponseTooLarge(limit)
        chunks.append(chunk)
    return b"".join(chunks)


def build_query_string(params: Mapping[str, Any]) -> str:
    """Encode query parameters sorted by key so URLs are deterministic."""
    return "&".join(
        f"{quote(str(key), safe=_QUERY_SAFE)}={quote(str(value), safe=_QUERY_SAFE)}"
        for key, value in sorted(params.items(), key=lambda item: str(item[0]))
    )


def encode_body(body: Any) -> bytes:
    """Serialize a request body as JSON, keeping field names verbatim."""
    try:
        if isinstance(body, BaseModel):
            return body.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
        return _ANY_ADAPTER.dump_json(body)
    except (ValueError, TypeError) as e:
        raise EncodingError(f"Failed to encode request body: {e}") from e


def decode_body(data: bytes, response_model: Any = None) -> Any:
    """Decode a JSON body, validating it against ``response_model`` when given."""
    try:
        if response_model is None:
            return json.loads(data)
        if isinstance(response_model, type) and issubclass(response_model, BaseModel):
            return response_model.model_validate_json(data)
        return TypeAdapter(response_model).validate_json(data)
    except (ValueError, ValidationError) as e:
        preview = data[:512].decode("utf-8", errors="replace")
        raise DecodingError(
            f"Failed to decode response: {e}. Response: {preview}",
            details={"response_preview": preview}
        ) from e


class HTTPDispatcher:
    """Issues one authenticated JSON request and maps the outcome to errors."""

    def __init__(
        self,
        auth_client: "AuthClient",
        base_url: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.auth_client = auth_client
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.max_response_bytes = max_response_bytes
        self.metrics = metrics
        self.logger = get_logger("gcloud.http")

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=request_timeout)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this dispatcher created it."""
        if self._owns_client:
            await self._client.aclose()

    def build_url(self, path: str, query_params: Optional[Mapping[str, Any]] = None) -> str:
        url = f"{self.base_url}{path if path.startswith('/') else '/' + path}"
        if query_params:
            url = f"{url}?{build_query_string(query_params)}"
        return url

    async def dispatch(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        query_params: Optional[Mapping[str, Any]] = None,
        response_model: Any = None,
        allow_empty: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> APIResponse[Any]:
        """Send one request and return the decoded response."""
        token = await self.auth_client.get_access_token()

        headers: Dict[str, str] = {
            "Authorization": token.authorization_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        content = encode_body(body) if body is not None else None
        url = self.build_url(path, query_params)

        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError(details={"method": method, "url": url})

        start = time.perf_counter()
        try:
            status_code, response_headers, data = await asyncio.wait_for(
                self._send(method, url, headers, content),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            self._record(method, "timeout", start)
            raise RequestTimeoutError(self.request_timeout, details={"method": method, "url": url}) from e
        except httpx.TimeoutException as e:
            self._record(method, "timeout", start)
            raise RequestTimeoutError(self.request_timeout, details={"method": method, "url": url}) from e
        except httpx.TransportError as e:
            self._record(method, "network_error", start)
            raise NetworkError(f"Request failed: {e}", details={"method": method, "url": url}) from e
        except httpx.DecodingError as e:
            self._record(method, "invalid_response", start)
            raise InvalidResponseError(f"Failed to decode response content: {e}",
                                       details={"method": method, "url": url}) from e
        except httpx.RequestError as e:
            self._record(method, "network_error", start)
            raise NetworkError(f"Request failed: {e}", details={"method": method, "url": url}) from e
        except ResponseTooLarge as e:
            self._record(method, "too_large", start)
            raise InvalidResponseError(str(e), details={"method": method, "url": url, "limit": e.limit}) from e

        self._record(method, str(status_code), start)
        self.logger.debug("Request completed", method=method, url=url, status_code=status_code)

        if not 200 <= status_code < 300:
            raise HTTPStatusError(status_code, GoogleErrorResponse.parse_body(data), url=url)

        if not data and (allow_empty or response_model is EmptyResponse):
            return APIResponse(data=EmptyResponse(), status_code=status_code, headers=response_headers)

        return APIResponse(
            data=decode_body(data, response_model),
            status_code=status_code,
            headers=response_headers,
        )

    async def _send(self, method: str, url: str, headers: Dict[str, str], content: Optional[bytes]):
        request = self._client.build_request(method, url, headers=headers, content=content)
        response = await self._client.send(request, stream=True)
        try:
            data = await read_body(response, self.max_response_bytes)
        finally:
            await response.aclose()
        return response.status_code, list(response.headers.multi_items()), data

    def _record(self, method: str, outcome: str, start: float) -> None:
        if self.metrics is not None:
            self.metrics.record_api_request(method, outcome, time.perf_counter() - start)
