"""
Client-side caching.

Provides an in-memory TTL cache with pluggable eviction and a response
cache layered on the HTTP client. Prefer short TTLs and explicit
invalidation after writes.
"""

from gcloud_core.caching.response_cache import CachedHTTPClient, ResponseCache, cache_key
from gcloud_core.caching.ttl_cache import (
    CacheConfig,
    CacheEntry,
    CacheEvictionPolicy,
    CacheStatistics,
    InMemoryCache,
)

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheEvictionPolicy",
    "CacheStatistics",
    "CachedHTTPClient",
    "InMemoryCache",
    "ResponseCache",
    "cache_key",
]
