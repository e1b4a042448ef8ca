"""
Authenticated REST client with retry and backoff for Google Cloud APIs.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, TYPE_CHECKING

import httpx

from gcloud_core.errors import APIError, MaxRetriesExceededError, RequestCancelledError
from gcloud_core.http.dispatcher import DEFAULT_MAX_RESPONSE_BYTES, DEFAULT_REQUEST_TIMEOUT, HTTPDispatcher
from gcloud_core.logging import get_logger
from gcloud_core.models import APIResponse, EmptyResponse
from gcloud_core.retry import RetryConfig

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from gcloud_core.auth.client import AuthClient
    from gcloud_core.metrics import MetricsCollector


class GoogleCloudHTTPClient:
    """Client for making authenticated, retried requests to one API base URL.

    Retries within a call are strictly sequential. Rate limiting (429),
    transient server errors (500, 502, 503, 504), network failures and, unless
    disabled in the retry config, timeouts are retried with jittered
    exponential backoff. Everything else surfaces on the first attempt.
    """

    def __init__(
        self,
        auth_client: "AuthClient",
        base_url: str,
        *,
        retry_config: RetryConfig = RetryConfig.DEFAULT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.auth_client = auth_client
        self.retry_config = retry_config
        self.metrics = metrics
        self.logger = get_logger("gcloud.http_client")
        self.dispatcher = HTTPDispatcher(
            auth_client,
            base_url,
            http_client=http_client,
            request_timeout=request_timeout,
            max_response_bytes=max_response_bytes,
            metrics=metrics,
        )

    @property
    def base_url(self) -> str:
        return self.dispatcher.base_url

    async def aclose(self) -> None:
        await self.dispatcher.aclose()

    async def __aenter__(self) -> "GoogleCloudHTTPClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def get_project_id(self) -> str:
        return self.auth_client.project_id

    async def get(self, path: str, *, query_params: Optional[Mapping[str, Any]] = None,
                  response_model: Any = None, cancel_event: Optional[asyncio.Event] = None) -> APIResponse[Any]:
        return await self.request("GET", path, query_params=query_params,
                                  response_model=response_model, cancel_event=cancel_event)

    async def post(self, path: str, body: Any = None, *, query_params: Optional[Mapping[str, Any]] = None,
                   response_model: Any = None, cancel_event: Optional[asyncio.Event] = None) -> APIResponse[Any]:
        return await self.request("POST", path, body=body, query_params=query_params,
                                  response_model=response_model, cancel_event=cancel_event)

    async def put(self, path: str, body: Any, *, query_params: Optional[Mapping[str, Any]] = None,
                  response_model: Any = None, cancel_event: Optional[asyncio.Event] = None) -> APIResponse[Any]:
        return await self.request("PUT", path, body=body, query_params=query_params,
                                  response_model=response_model, cancel_event=cancel_event)

    async def patch(self, path: str, body: Any, *, query_params: Optional[Mapping[str, Any]] = None,
                    response_model: Any = None, cancel_event: Optional[asyncio.Event] = None) -> APIResponse[Any]:
        return await self.request("PATCH", path, body=body, query_params=query_params,
                                  response_model=response_model, cancel_event=cancel_event)

    async def delete(self, path: str, *, query_params: Optional[Mapping[str, Any]] = None,
                     response_model: Any = None, cancel_event: Optional[asyncio.Event] = None) -> APIResponse[Any]:
        return await self.request("DELETE", path, query_params=query_params,
                                  response_model=response_model, cancel_event=cancel_event)

    async def delete_no_content(self, path: str, *, query_params: Optional[Mapping[str, Any]] = None,
                                cancel_event: Optional[asyncio.Event] = None) -> None:
        """DELETE a resource whose endpoint answers with an empty body."""
        await self.request("DELETE", path, query_params=query_params, response_model=EmptyResponse,
                           allow_empty=True, cancel_event=cancel_event)

    async def request(
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
        """Send a request, retrying transient failures per the retry config."""
        max_retries = self.retry_config.max_retries
        last_error: Optional[APIError] = None

        for attempt in range(max_retries + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelledError(details={"method": method, "path": path, "attempt": attempt + 1})

            try:
                response = await self.dispatcher.dispatch(
                    method,
                    path,
                    body=body,
                    query_params=query_params,
                    response_model=response_model,
                    allow_empty=allow_empty,
                    cancel_event=cancel_event,
                )
            except APIError as e:
                last_error = e
                if not self.retry_config.is_retryable(e):
                    raise
                if attempt >= max_retries:
                    break

                delay = self.retry_config.delay(attempt)
                self.logger.warning(
                    "Retrying request after transient failure",
                    method=method,
                    path=path,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                    error_code=e.code,
                    status_code=e.details.get("status_code"),
                )
                if self.metrics is not None:
                    self.metrics.record_retry(e.code)
                await self._backoff(delay, cancel_event, method=method, path=path, attempt=attempt + 1)
                continue

            if attempt > 0:
                self.logger.info("Request succeeded after retry", method=method, path=path, attempt=attempt + 1)
            return response

        if last_error is None:
            raise RuntimeError("Retry loop ended without a result or an error")
        self.logger.error(
            "All retry attempts exhausted",
            method=method,
            path=path,
            attempts=max_retries + 1,
            error=str(last_error),
        )
        if max_retries == 0:
            raise last_error
        raise MaxRetriesExceededError(last_error, attempts=max_retries + 1) from last_error

    @staticmethod
    async def _backoff(delay: float, cancel_event: Optional[asyncio.Event], **context: Any) -> None:
        """Sleep before the next attempt, waking early if the request is cancelled."""
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise RequestCancelledError(details=context)
