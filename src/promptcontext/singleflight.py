"""In-flight request registry.

Concurrent callers asking for the same key share one execution of the
expensive operation. The first caller (the leader) starts it as a task owned
by the registry; every caller, leader included, awaits that task through
``asyncio.shield`` so no single caller's cancellation stops the shared work.
Check-and-insert on the registry is serialised with an ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Generic, TypeVar

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = structlog.get_logger()

T = TypeVar("T")


class SingleFlight(Generic[T]):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._inflight: dict[str, asyncio.Task[T]] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> tuple[T, bool]:
        """Run ``fn`` once per key at a time.

        Returns ``(result, shared)`` where ``shared`` is True for followers.
        Exceptions raised by the shared work propagate to every caller still
        waiting. A cancelled caller stops waiting; the work keeps running for
        the others and its result is discarded if nobody is left.
        """
        async with self._lock:
            task = self._inflight.get(key)
            leader = task is None
            if task is None:
                task = asyncio.create_task(_run(fn))
                self._inflight[key] = task
                task.add_done_callback(lambda done: self._finished(key, done))

        if not leader:
            log.debug("singleflight_joined", key=key)
        return await asyncio.shield(task), not leader

    def _finished(self, key: str, task: asyncio.Task[T]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            log.debug("singleflight_failed", key=key, error=str(task.exception()))


async def _run(fn: Callable[[], Awaitable[T]]) -> T:
    return await fn()
