"""Unit tests for promptcontext.hot_cache."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from promptcontext.hot_cache import HotCache
from promptcontext.models.cache import CacheEntry
from promptcontext.models.context import ContextBundle


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _entry(key: str, clock: FakeClock, ttl: float = 60.0) -> CacheEntry:
    return CacheEntry(
        key=key,
        bundle=ContextBundle(token_budget=100),
        created_at=clock.now,
        expires_at=clock.now + timedelta(seconds=ttl),
        size_bytes=10,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


class TestGetPut:
    def test_put_then_get(self, clock: FakeClock) -> None:
        cache = HotCache(2, clock=clock)
        cache.put("k1", _entry("k1", clock))
        entry = cache.get("k1")
        assert entry is not None
        assert entry.key == "k1"

    def test_miss_returns_none(self, clock: FakeClock) -> None:
        assert HotCache(2, clock=clock).get("absent") is None

    def test_stores_independent_copy(self, clock: FakeClock) -> None:
        cache = HotCache(2, clock=clock)
        original = _entry("k1", clock)
        cache.put("k1", original)
        stored = cache.get("k1")
        assert stored == original
        assert stored is not original


class TestEviction:
    def test_least_recently_used_is_evicted(self, clock: FakeClock) -> None:
        cache = HotCache(2, clock=clock)
        cache.put("a", _entry("a", clock))
        cache.put("b", _entry("b", clock))
        cache.get("a")  # "b" becomes least recently used
        cache.put("c", _entry("c", clock))

        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.get("c") is not None
        assert len(cache) == 2

    def test_reput_refreshes_recency(self, clock: FakeClock) -> None:
        cache = HotCache(2, clock=clock)
        cache.put("a", _entry("a", clock))
        cache.put("b", _entry("b", clock))
        cache.put("a", _entry("a", clock))
        cache.put("c", _entry("c", clock))
        assert cache.get("a") is not None
        assert cache.get("b") is None


class TestExpiry:
    def test_expired_entry_is_miss_and_removed(self, clock: FakeClock) -> None:
        cache = HotCache(4, clock=clock)
        cache.put("k", _entry("k", clock, ttl=10))
        clock.advance(9)
        assert cache.get("k") is not None
        clock.advance(1)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_max_ttl_caps_copy_expiry(self, clock: FakeClock) -> None:
        cache = HotCache(4, max_ttl_seconds=5, clock=clock)
        cache.put("k", _entry("k", clock, ttl=3600))
        clock.advance(6)
        assert cache.get("k") is None

    def test_max_ttl_never_extends_expiry(self, clock: FakeClock) -> None:
        cache = HotCache(4, max_ttl_seconds=600, clock=clock)
        cache.put("k", _entry("k", clock, ttl=10))
        clock.advance(11)
        assert cache.get("k") is None


class TestInvalidation:
    def test_invalidate_prefix(self, clock: FakeClock) -> None:
        cache = HotCache(10, clock=clock)
        for key in ("ctx:a:1", "ctx:a:2", "ctx:b:1"):
            cache.put(key, _entry(key, clock))
        assert cache.invalidate_prefix("ctx:a:") == 2
        assert cache.get("ctx:b:1") is not None
        assert len(cache) == 1

    def test_clear(self, clock: FakeClock) -> None:
        cache = HotCache(10, clock=clock)
        cache.put("k", _entry("k", clock))
        cache.clear()
        assert len(cache) == 0


class TestPreconditions:
    def test_non_positive_capacity_rejected(self) -> None:
        with pytest.raises(ValueError):
            HotCache(0)

    def test_empty_key_rejected(self, clock: FakeClock) -> None:
        cache = HotCache(1, clock=clock)
        with pytest.raises(ValueError):
            cache.get("")
        with pytest.raises(ValueError):
            cache.put("", _entry("x", clock))
