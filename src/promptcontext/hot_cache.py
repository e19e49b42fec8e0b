"""Bounded in-memory LRU cache fronting the persistent CacheStore.

Pure in-process data structure: no I/O and no awaits, so every operation
completes without yielding to the event loop. Entries are copies of what the
store holds and may expire earlier than their store counterpart.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from promptcontext.models.cache import CacheEntry

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HotCache:
    """LRU map of cache key → CacheEntry with lazy expiry."""

    def __init__(
        self,
        capacity: int,
        *,
        max_ttl_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"HotCache capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._max_ttl = timedelta(seconds=max_ttl_seconds) if max_ttl_seconds else None
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> CacheEntry | None:
        _check_key(key)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            log.debug("hot_cache_expired", key=key)
            return None
        self._entries.move_to_end(key)
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        _check_key(key)
        copy = entry.model_copy(deep=True)
        if self._max_ttl is not None:
            capped = self._clock() + self._max_ttl
            if capped < copy.expires_at:
                copy = copy.model_copy(update={"expires_at": capped})
        self._entries[key] = copy
        self._entries.move_to_end(key)
        while len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            log.debug("hot_cache_evicted", key=evicted)

    def invalidate_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()


def _check_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        raise ValueError(f"Invalid cache key: {key!r}")
