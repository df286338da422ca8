"""
In-memory TTL cache owned by a single client instance.

Implements the cache-aside pattern used by every provider client:
1. Check cache
2. On miss, call the provider
3. Store the result (empty results included where the caller chooses)
4. Return result

Entries expire lazily on read and eagerly through `cleanup()`, which a
`CacheSweeper` can run periodically. No locking: all mutations happen
between await points on a single event loop.
"""
import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, TypeVar

from multimodal.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A cached value with its storage time and lifetime (seconds)."""

    value: T
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class TTLCache(Generic[T]):
    """Dict-backed cache with per-entry TTL."""

    def __init__(
        self,
        default_ttl: float,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.name = name
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> Optional[T]:
        """
        Get a live value.

        Returns:
            Cached value, or None on miss or expiry (expired entries are evicted).
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None

        return entry.value

    def get_entry(self, key: str) -> Optional[CacheEntry[T]]:
        """Like get, but returns the entry itself so callers can update it in place."""
        if self.get(key) is None:
            return None
        return self._entries[key]

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(
            value=value,
            stored_at=self._clock(),
            ttl=ttl if ttl is not None else self.default_ttl,
        )

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """
        Evict every expired entry.

        Returns:
            Number of entries evicted
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {"name": self.name, "size": len(self._entries)}

    def __len__(self) -> int:
        return len(self._entries)


def hash_key(value: str) -> str:
    """md5 of a string, for compact cache keys."""
    return hashlib.md5(value.encode()).hexdigest()


def make_cache_key(prefix: str, *parts: Any) -> str:
    """
    Deterministic cache key from arbitrary JSON-serialisable parts.

    Example:
        make_cache_key("search", "serper", "wind turbines", 3, "any")
    """
    serialized = json.dumps(parts, sort_keys=True, default=str, ensure_ascii=False)
    return f"{prefix}:{hash_key(serialized)}"


class CacheSweeper:
    """Periodically runs cleanup() on a set of caches."""

    def __init__(self, caches: Iterable[TTLCache], interval_seconds: float):
        self.caches: List[TTLCache] = list(caches)
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start sweeping (requires a running event loop)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def sweep(self) -> int:
        """One sweep across all caches; returns total evicted."""
        evicted = 0
        for cache in self.caches:
            evicted += cache.cleanup()
        if evicted:
            logger.debug("cache_sweep_evicted", evicted=evicted)
        return evicted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.sweep()
