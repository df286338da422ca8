"""
Unit tests for the in-memory TTL cache and cache sweeper.
"""
import asyncio

import pytest

from multimodal.core.cache import CacheSweeper, TTLCache, make_cache_key


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_cache_get_set():
    """Stored values are returned until their TTL elapses."""
    clock = FakeClock()
    cache = TTLCache(default_ttl=60, clock=clock)

    cache.set("key", {"data": "value"})
    assert cache.get("key") == {"data": "value"}

    clock.advance(59)
    assert cache.get("key") == {"data": "value"}


def test_cache_lazy_expiry_evicts_entry():
    """Reading an expired entry misses and evicts it."""
    clock = FakeClock()
    cache = TTLCache(default_ttl=60, clock=clock)

    cache.set("key", "value")
    clock.advance(61)

    assert cache.get("key") is None
    assert len(cache) == 0


def test_cache_per_entry_ttl_overrides_default():
    clock = FakeClock()
    cache = TTLCache(default_ttl=60, clock=clock)

    cache.set("short", "a", ttl=5)
    cache.set("long", "b")
    clock.advance(10)

    assert cache.get("short") is None
    assert cache.get("long") == "b"


def test_cache_stores_empty_values():
    """Empty lists are cached values, not misses."""
    cache = TTLCache(default_ttl=60)
    cache.set("empty", [])

    assert cache.get("empty") == []
    assert cache.has("empty")


def test_cache_cleanup_evicts_only_expired():
    clock = FakeClock()
    cache = TTLCache(default_ttl=60, clock=clock)

    cache.set("old", 1)
    clock.advance(30)
    cache.set("new", 2)
    clock.advance(31)

    assert cache.cleanup() == 1
    assert cache.get("new") == 2
    assert cache.stats() == {"name": "cache", "size": 1}


def test_cache_delete_and_clear():
    cache = TTLCache(default_ttl=60)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.delete("a")
    assert cache.get("a") is None

    cache.clear()
    assert len(cache) == 0


def test_make_cache_key_is_deterministic():
    """Same parts give the same key; different parts a different key."""
    key1 = make_cache_key("search", "wind turbines", 3, {"freshness": None})
    key2 = make_cache_key("search", "wind turbines", 3, {"freshness": None})
    key3 = make_cache_key("search", "solar panels", 3, {"freshness": None})

    assert key1 == key2
    assert key1 != key3
    assert key1.startswith("search:")


def test_make_cache_key_ignores_dict_ordering():
    assert make_cache_key("x", {"a": 1, "b": 2}) == make_cache_key("x", {"b": 2, "a": 1})


def test_cache_sweeper_sweep_counts_evictions():
    clock = FakeClock()
    first = TTLCache(default_ttl=10, clock=clock)
    second = TTLCache(default_ttl=10, clock=clock)
    first.set("a", 1)
    second.set("b", 2)
    second.set("c", 3, ttl=100)
    clock.advance(11)

    sweeper = CacheSweeper([first, second], interval_seconds=60)
    assert sweeper.sweep() == 2
    assert second.get("c") == 3


@pytest.mark.asyncio
async def test_cache_sweeper_runs_in_background():
    """The sweeper task evicts periodically and stops cleanly."""
    clock = FakeClock()
    cache = TTLCache(default_ttl=1, clock=clock)
    cache.set("a", 1)
    clock.advance(2)

    sweeper = CacheSweeper([cache], interval_seconds=0.01)
    sweeper.start()
    assert sweeper.running

    await asyncio.sleep(0.05)
    assert len(cache) == 0

    await sweeper.stop()
    assert not sweeper.running
