"""Circuit breaker guarding calls to one external endpoint.

State transitions are evaluated on each call against an injectable monotonic
clock; there are no background timers. The cool-down expiry is noticed by the
first call that arrives after it.

    Closed ──(threshold failures within window)──▶ Open
    Open ──(cool-down elapsed, next call)──▶ HalfOpen
    HalfOpen ──(trial success)──▶ Closed
    HalfOpen ──(trial failure)──▶ Open (cool-down restarts)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

import structlog

from promptcontext.errors import CircuitOpenError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from promptcontext.config import BreakerSettings

log = structlog.get_logger()

T = TypeVar("T")


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    endpoint: str
    state: CircuitState
    recent_failures: int
    opened_at: float | None


class CircuitBreaker:
    """Failure-tracking gate around an async callable.

    Safe under concurrent calls: every state read-modify-write happens under
    an ``asyncio.Lock``. The guarded call itself runs outside the lock.

    Exceptions in ``ignored`` mean the endpoint did answer (e.g. it rejected a
    malformed query); they count as a success and propagate unchanged.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        cooldown_seconds: float = 30.0,
        half_open_max_calls: int = 1,
        ignored: tuple[type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")
        if half_open_max_calls <= 0:
            raise ValueError("half_open_max_calls must be positive")
        self.endpoint = endpoint
        self._failure_threshold = failure_threshold
        self._window = window_seconds
        self._cooldown = cooldown_seconds
        self._half_open_max_calls = half_open_max_calls
        self._ignored = ignored
        self._clock = clock

        self._lock = asyncio.Lock()
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: float | None = None
        self._trials_in_flight = 0

    @classmethod
    def from_settings(
        cls,
        endpoint: str,
        settings: BreakerSettings,
        *,
        ignored: tuple[type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> CircuitBreaker:
        return cls(
            endpoint,
            failure_threshold=settings.failure_threshold,
            window_seconds=settings.window_seconds,
            cooldown_seconds=settings.cooldown_seconds,
            half_open_max_calls=settings.half_open_max_calls,
            ignored=ignored,
            clock=clock,
        )

    @property
    def state(self) -> CircuitState:
        """Current state, with a pending Open → HalfOpen transition applied."""
        if self._state is CircuitState.OPEN and self._cooldown_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    def snapshot(self) -> BreakerSnapshot:
        self._prune(self._clock())
        return BreakerSnapshot(
            endpoint=self.endpoint,
            state=self.state,
            recent_failures=len(self._failures),
            opened_at=self._opened_at,
        )

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` through the breaker.

        Raises ``CircuitOpenError`` without calling ``fn`` while the circuit is
        open, or while half-open with all trial slots taken.
        """
        is_trial = await self._before_call()
        try:
            result = await fn()
        except self._ignored:
            await self._on_success(is_trial)
            raise
        except asyncio.CancelledError:
            await self._release_trial(is_trial)
            raise
        except Exception:
            await self._on_failure(is_trial)
            raise
        await self._on_success(is_trial)
        return result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _before_call(self) -> bool:
        async with self._lock:
            if self._state is CircuitState.OPEN:
                if not self._cooldown_elapsed():
                    raise CircuitOpenError(self.endpoint)
                self._transition(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._trials_in_flight >= self._half_open_max_calls:
                    raise CircuitOpenError(self.endpoint)
                self._trials_in_flight += 1
                return True
            return False

    async def _on_success(self, is_trial: bool) -> None:
        async with self._lock:
            if is_trial:
                self._trials_in_flight -= 1
                if self._state is CircuitState.HALF_OPEN:
                    self._failures.clear()
                    self._opened_at = None
                    self._transition(CircuitState.CLOSED)

    async def _on_failure(self, is_trial: bool) -> None:
        async with self._lock:
            now = self._clock()
            if is_trial:
                self._trials_in_flight -= 1
                if self._state is CircuitState.HALF_OPEN:
                    self._open(now)
                return

            if self._state is not CircuitState.CLOSED:
                return
            self._failures.append(now)
            self._prune(now)
            if len(self._failures) >= self._failure_threshold:
                self._open(now)

    async def _release_trial(self, is_trial: bool) -> None:
        if not is_trial:
            return
        async with self._lock:
            self._trials_in_flight -= 1

    def _open(self, now: float) -> None:
        self._opened_at = now
        self._failures.clear()
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is self._state:
            return
        old_state, self._state = self._state, new_state
        event = "circuit_opened" if new_state is CircuitState.OPEN else "circuit_state_changed"
        log.info(event, endpoint=self.endpoint, old_state=old_state, new_state=new_state)

    def _cooldown_elapsed(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self._cooldown

    def _prune(self, now: float) -> None:
        cutoff = now - self._window
        while self._failures and self._failures[0] <= cutoff:
            self._failures.popleft()
