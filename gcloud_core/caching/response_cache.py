"""
Response caching for Google Cloud API calls.

Keys are plain strings of the form ``"<service>:<kind>:<part>..."`` so that
everything belonging to one service or resource family can be dropped with
a prefix match.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, TYPE_CHECKING

from gcloud_core.caching.ttl_cache import CacheConfig, CacheStatistics, InMemoryCache
from gcloud_core.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from gcloud_core.http.client import GoogleCloudHTTPClient
    from gcloud_core.metrics import MetricsCollector
    from gcloud_core.models import APIResponse


def cache_key(service: str, kind: str, *parts: Optional[str]) -> str:
    """Build a response cache key, e.g. ``cache_key("storage", "object", bucket, name)``."""
    return ":".join([service, kind, *("" if part is None else str(part) for part in parts)])


class ResponseCache:
    """String-keyed cache of decoded API responses."""

    def __init__(self,
                 config: CacheConfig = CacheConfig.DEFAULT,
                 *,
                 metrics: Optional["MetricsCollector"] = None):
        self.cache: InMemoryCache[str, Any] = InMemoryCache(config, name="responses", metrics=metrics)
        self.logger = get_logger("gcloud.cache")

    async def __aenter__(self) -> "ResponseCache":
        await self.cache.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cache.close()

    def get(self, key: str) -> Any:
        return self.cache.get(key)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self.cache.set(key, value, ttl)

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]], ttl: Optional[float] = None) -> Any:
        return await self.cache.get_or_fetch(key, fetch, ttl)

    def remove(self, key: str) -> None:
        self.cache.remove(key)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``."""
        removed = 0
        for key in self.cache.keys:
            if key.startswith(prefix):
                self.cache.remove(key)
                removed += 1
        if removed:
            self.logger.debug("Invalidated cached responses", prefix=prefix, removed=removed)
        return removed

    def invalidate_service(self, service: str) -> int:
        return self.invalidate_prefix(f"{service}:")

    def clear(self) -> None:
        self.cache.clear()

    @property
    def statistics(self) -> CacheStatistics:
        return self.cache.statistics


class CachedHTTPClient:
    """``GoogleCloudHTTPClient`` wrapper with read-through caching of GETs.

    Mutating verbs always go to the API and then drop the keys listed in
    ``invalidate_keys``.
    """

    def __init__(self,
                 client: "GoogleCloudHTTPClient",
                 cache: Optional[ResponseCache] = None,
                 *,
                 default_ttl: Optional[float] = None):
        self.client = client
        self.cache = cache or ResponseCache(metrics=client.metrics)
        self.default_ttl = default_ttl

    async def get(self,
                  path: str,
                  *,
                  cache_key: str,
                  query_params: Optional[Mapping[str, Any]] = None,
                  response_model: Any = None,
                  ttl: Optional[float] = None) -> Any:
        """GET ``path`` and return its decoded data, serving from cache when possible."""
        async def fetch() -> Any:
            response = await self.client.get(path, query_params=query_params, response_model=response_model)
            return response.data

        return await self.cache.get_or_fetch(cache_key, fetch, ttl if ttl is not None else self.default_ttl)

    async def post(self, path: str, body: Any = None, *,
                   invalidate_keys: Iterable[str] = (), **kwargs) -> "APIResponse[Any]":
        response = await self.client.post(path, body, **kwargs)
        self._invalidate(invalidate_keys)
        return response

    async def put(self, path: str, body: Any, *,
                  invalidate_keys: Iterable[str] = (), **kwargs) -> "APIResponse[Any]":
        response = await self.client.put(path, body, **kwargs)
        self._invalidate(invalidate_keys)
        return response

    async def patch(self, path: str, body: Any, *,
                    invalidate_keys: Iterable[str] = (), **kwargs) -> "APIResponse[Any]":
        response = await self.client.patch(path, body, **kwargs)
        self._invalidate(invalidate_keys)
        return response

    async def delete(self, path: str, *,
                     invalidate_keys: Iterable[str] = (), **kwargs) -> "APIResponse[Any]":
        response = await self.client.delete(path, **kwargs)
        self._invalidate(invalidate_keys)
        return response

    async def delete_no_content(self, path: str, *, invalidate_keys: Iterable[str] = (), **kwargs) -> None:
        await self.client.delete_no_content(path, **kwargs)
        self._invalidate(invalidate_keys)

    def _invalidate(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.cache.remove(key)
