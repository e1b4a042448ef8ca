"""
In-memory TTL cache with selectable eviction policy.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import (
    Awaitable, Callable, ClassVar, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar, TYPE_CHECKING,
)

from gcloud_core.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from gcloud_core.metrics import MetricsCollector

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class CacheEvictionPolicy(Enum):
    """Which entry to drop when the cache is full."""
    LRU = "lru"    # oldest last access
    LFU = "lfu"    # fewest accesses
    FIFO = "fifo"  # oldest insertion
    TTL = "ttl"    # soonest expiry


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """One cached value. Entries are replaced on access, never mutated."""

    value: V
    created_at: float
    expires_at: float
    access_count: int = 0
    last_accessed_at: float = 0.0

    @classmethod
    def create(cls, value: V, ttl: float, now: float) -> "CacheEntry[V]":
        return cls(value=value, created_at=now, expires_at=now + ttl, last_accessed_at=now)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def remaining_ttl(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def with_access(self, now: float) -> "CacheEntry[V]":
        return replace(self, access_count=self.access_count + 1, last_accessed_at=now)


@dataclass(frozen=True)
class CacheConfig:
    """Sizing, expiry and sweep settings for an ``InMemoryCache``."""

    default_ttl: float = 300.0
    max_entries: int = 1000
    eviction_policy: CacheEvictionPolicy = CacheEvictionPolicy.LRU
    auto_cleanup: bool = True
    cleanup_interval: float = 60.0

    DEFAULT: ClassVar["CacheConfig"]
    SHORT_LIVED: ClassVar["CacheConfig"]
    LONG_LIVED: ClassVar["CacheConfig"]
    CONFIGURATION: ClassVar["CacheConfig"]

    def __post_init__(self):
        if self.max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if self.default_ttl < 0:
            raise ValueError("default_ttl must be >= 0")


CacheConfig.DEFAULT = CacheConfig()
CacheConfig.SHORT_LIVED = CacheConfig(default_ttl=30.0, max_entries=500, cleanup_interval=15.0)
CacheConfig.LONG_LIVED = CacheConfig(default_ttl=3600.0, max_entries=5000, cleanup_interval=300.0)
CacheConfig.CONFIGURATION = CacheConfig(default_ttl=86400.0, max_entries=100, cleanup_interval=3600.0)


@dataclass(frozen=True)
class CacheStatistics:
    hits: int
    misses: int
    entry_count: int
    evictions: int
    expirations: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    @property
    def miss_rate(self) -> float:
        total = self.hits + self.misses
        return self.misses / total if total else 0.0


class InMemoryCache(Generic[K, V]):
    """Key/value store with per-entry expiry.

    Expired entries are treated as absent by ``get`` and ``contains`` and
    dropped on the spot; ``cleanup`` sweeps the rest. When ``set`` finds the
    cache full it evicts according to ``config.eviction_policy`` until there
    is room. All state sits behind a ``threading.Lock`` that is never held
    across an ``await``, so ``get_or_fetch`` runs its fetch unlocked and
    concurrent misses for one key each call the fetcher.
    """

    def __init__(self,
                 config: CacheConfig = CacheConfig.DEFAULT,
                 *,
                 name: str = "default",
                 metrics: Optional["MetricsCollector"] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.name = name
        self.metrics = metrics
        self.logger = get_logger("gcloud.cache")
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[K, CacheEntry[V]] = {}

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

        self._cleanup_task: Optional[asyncio.Task] = None
        self._closed = False

    async def __aenter__(self) -> "InMemoryCache[K, V]":
        if self.config.auto_cleanup:
            self.start_auto_cleanup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def get(self, key: K) -> Optional[V]:
        """Return the cached value, or None when missing or expired."""
        return self._lookup(key)[1]

    def set(self, key: K, value: V, ttl: Optional[float] = None) -> None:
        """Store ``value`` for ``ttl`` seconds (``config.default_ttl`` when omitted)."""
        evicted: List[K] = []
        with self._lock:
            now = self._clock()
            while self._entries and len(self._entries) >= self.config.max_entries:
                victim = self._select_victim()
                del self._entries[victim]
                self._evictions += 1
                evicted.append(victim)

            self._entries[key] = CacheEntry.create(value, self.config.default_ttl if ttl is None else ttl, now)

        for victim in evicted:
            self.logger.debug("Evicted cache entry", cache=self.name, key=str(victim),
                              policy=self.config.eviction_policy.value)
            self._record("eviction")

    async def get_or_fetch(self,
                           key: K,
                           fetch: Callable[[], Awaitable[V]],
                           ttl: Optional[float] = None) -> V:
        """Return the cached value or await ``fetch()`` and cache its result.

        Errors from ``fetch`` propagate and nothing is stored.
        """
        found, value = self._lookup(key)
        if found:
            return value  # type: ignore[return-value]

        value = await fetch()
        self.set(key, value, ttl)
        return value

    def remove(self, key: K) -> Optional[V]:
        """Remove ``key`` and return its value, if it was present."""
        with self._lock:
            entry = self._entries.pop(key, None)
        return entry.value if entry is not None else None

    def contains(self, key: K) -> bool:
        expired = False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._expirations += 1
                expired = True
        if expired:
            self._record("expiration")
            return False
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)

        if expired:
            self.logger.debug("Swept expired cache entries", cache=self.name, removed=len(expired))
            for _ in expired:
                self._record("expiration")
        return len(expired)

    def entry(self, key: K) -> Optional[CacheEntry[V]]:
        """Peek at an entry's metadata without counting an access."""
        with self._lock:
            return self._entries.get(key)

    @property
    def keys(self) -> List[K]:
        with self._lock:
            return list(self._entries)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.count

    @property
    def statistics(self) -> CacheStatistics:
        with self._lock:
            return CacheStatistics(
                hits=self._hits,
                misses=self._misses,
                entry_count=len(self._entries),
                evictions=self._evictions,
                expirations=self._expirations,
            )

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def auto_cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def start_auto_cleanup(self) -> None:
        """Start the periodic sweep on the running event loop.

        Does nothing if the sweep is already running or the cache is closed.
        """
        if self._closed or self.auto_cleanup_running:
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    def stop_auto_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()

    async def close(self) -> None:
        """Stop the periodic sweep for good."""
        self._closed = True
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _cleanup_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.config.cleanup_interval)
            if self._closed:
                break
            self.cleanup()

    def _lookup(self, key: K) -> Tuple[bool, Optional[V]]:
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                events: Tuple[str, ...] = ("miss",)
            elif entry.is_expired(now):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                events = ("expiration", "miss")
            else:
                self._entries[key] = entry.with_access(now)
                self._hits += 1
                events = ("hit",)

        for event in events:
            self._record(event)
        if entry is not None and events[0] == "hit":
            return True, entry.value
        return False, None

    def _select_victim(self) -> K:
        policy = self.config.eviction_policy
        entries = self._entries.items()
        if policy is CacheEvictionPolicy.LRU:
            return min(entries, key=lambda item: item[1].last_accessed_at)[0]
        if policy is CacheEvictionPolicy.LFU:
            return min(entries, key=lambda item: item[1].access_count)[0]
        if policy is CacheEvictionPolicy.FIFO:
            return min(entries, key=lambda item: item[1].created_at)[0]
        return min(entries, key=lambda item: item[1].expires_at)[0]

    def _record(self, event: str) -> None:
        if self.metrics is not None:
            self.metrics.record_cache_event(self.name, event)
