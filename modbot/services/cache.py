"""
InMemoryCache - Async-compatible cache with TTL expiration and LRU eviction.

Features:
- TTL (Time To Live) for cache entries, checked lazily on access
- LRU eviction using the dict's insertion order (hits re-insert the entry)
- Hit/miss/eviction counters for observability
- Safe for overlapping coroutines via an asyncio lock
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Generic, Hashable, Iterable, TypeVar

from loguru import logger

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

CACHE_KEY_DELIMITER = ":"


def _now() -> datetime:
    return datetime.now()


@dataclass
class CacheEntry(Generic[V]):
    """A single cache entry with metadata."""

    value: V
    expires_at: datetime
    created_at: datetime
    hits: int = 0

    def is_expired(self) -> bool:
        """Check if entry is past its TTL."""
        return _now() > self.expires_at


@dataclass
class CacheStats:
    """Cache statistics, cumulative since the last clear()."""

    size: int = 0
    max_size: int = 0
    ttl_ms: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "size": self.size,
            "max_size": self.max_size,
            "ttl_ms": self.ttl_ms,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class InMemoryCache(Generic[K, V]):
    """
    In-memory cache with TTL expiration and LRU eviction.

    Usage:
        cache: InMemoryCache[str, dict] = InMemoryCache(
            ttl=timedelta(minutes=1), max_size=1000, name="case_by_id"
        )

        cached = await cache.get(key)
        if cached is not None:
            return cached

        data = await fetch_data()
        await cache.set(key, data)

    Expired entries are not swept proactively, so ``size`` may include
    entries that have expired but were not accessed since.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(seconds=30),
        max_size: int = 500,
        name: str = "default",
        debug: bool = False,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._store: dict[K, CacheEntry[V]] = {}
        self._ttl = ttl
        self._max_size = max_size
        self.name = name
        self._debug = debug
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._store)

    async def get(self, key: K) -> V | None:
        """Return the cached value, or None when absent or expired."""
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                self._log(f"MISS: {key}")
                return None

            if entry.is_expired():
                del self._store[key]
                self._misses += 1
                self._log(f"EXPIRED: {key}")
                return None

            self._hits += 1
            entry.hits += 1
            # Move to the most-recently-used end
            del self._store[key]
            self._store[key] = entry
            self._log(f"HIT: {key}")
            return entry.value

    async def set(self, key: K, value: V) -> None:
        """Store a value, evicting the least recently used entry when full."""
        now = _now()
        entry = CacheEntry(value=value, expires_at=now + self._ttl, created_at=now)

        async with self._lock:
            if key in self._store:
                del self._store[key]
            elif len(self._store) >= self._max_size:
                self._evict_oldest()

            self._store[key] = entry
            self._log(f"SET: {key} (TTL: {self._ttl.total_seconds()}s)")

    async def delete(self, key: K) -> None:
        """Delete a specific key from cache."""
        async with self._lock:
            self._store.pop(key, None)

    async def clear(self) -> None:
        """Clear all cache entries and reset the counters."""
        async with self._lock:
            count = len(self._store)
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._log(f"CLEAR: {count} entries removed")

    def _evict_oldest(self) -> None:
        oldest_key = next(iter(self._store), None)
        if oldest_key is None:
            return
        del self._store[oldest_key]
        self._evictions += 1
        self._log(f"EVICT: {oldest_key}")

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return CacheStats(
            size=len(self._store),
            max_size=self._max_size,
            ttl_ms=int(self._ttl.total_seconds() * 1000),
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
        )

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[InMemoryCache:{self.name}] {message}")


def build_cache_key(parts: Iterable[Any]) -> str:
    """Join the non-None parts into a stable cache key."""
    return CACHE_KEY_DELIMITER.join(str(part) for part in parts if part is not None)
