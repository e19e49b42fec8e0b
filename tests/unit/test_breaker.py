"""Unit tests for promptcontext.breaker.

A fake monotonic clock drives every cool-down and window transition, so no
test sleeps.
"""

from __future__ import annotations

import asyncio

import pytest

from promptcontext.breaker import CircuitBreaker, CircuitState
from promptcontext.config import BreakerSettings
from promptcontext.errors import CircuitOpenError, PermanentUpstreamError, TransientUpstreamError


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class Endpoint:
    """Scripted async callable counting invocations."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return "ok"


def _breaker(clock: FakeClock, **overrides) -> CircuitBreaker:
    params = {
        "failure_threshold": 3,
        "window_seconds": 60.0,
        "cooldown_seconds": 30.0,
        "half_open_max_calls": 1,
        "ignored": (PermanentUpstreamError,),
    }
    params.update(overrides)
    return CircuitBreaker("https://docs.example", clock=clock, **params)


async def _trip(breaker: CircuitBreaker, times: int) -> None:
    failing = Endpoint(TransientUpstreamError("boom"))
    for _ in range(times):
        with pytest.raises(TransientUpstreamError):
            await breaker.call(failing)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Closed
# ---------------------------------------------------------------------------


class TestClosed:
    async def test_success_passes_through(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        assert await breaker.call(Endpoint()) == "ok"
        assert breaker.state is CircuitState.CLOSED

    async def test_failures_below_threshold_stay_closed(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 2)
        assert breaker.state is CircuitState.CLOSED
        assert breaker.snapshot().recent_failures == 2

    async def test_failures_outside_window_do_not_count(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 2)
        clock.now += 61
        await _trip(breaker, 2)
        assert breaker.state is CircuitState.CLOSED

    async def test_ignored_errors_are_not_failures(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        rejecting = Endpoint(PermanentUpstreamError("bad query"))
        for _ in range(5):
            with pytest.raises(PermanentUpstreamError):
                await breaker.call(rejecting)
        assert breaker.state is CircuitState.CLOSED
        assert breaker.snapshot().recent_failures == 0


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------


class TestOpen:
    async def test_threshold_failures_open_circuit(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 3)
        assert breaker.state is CircuitState.OPEN

    async def test_open_circuit_short_circuits_without_calling(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 3)
        endpoint = Endpoint()

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(endpoint)

        assert endpoint.calls == 0
        assert exc_info.value.endpoint == "https://docs.example"

    async def test_stays_open_until_cooldown(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 3)
        clock.now += 29.9
        with pytest.raises(CircuitOpenError):
            await breaker.call(Endpoint())


# ---------------------------------------------------------------------------
# Half-open
# ---------------------------------------------------------------------------


class TestHalfOpen:
    async def test_state_reports_half_open_after_cooldown(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 3)
        clock.now += 30
        assert breaker.state is CircuitState.HALF_OPEN

    async def test_trial_success_closes(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 3)
        clock.now += 30
        endpoint = Endpoint()

        assert await breaker.call(endpoint) == "ok"
        assert endpoint.calls == 1
        assert breaker.state is CircuitState.CLOSED
        assert breaker.snapshot().recent_failures == 0

    async def test_trial_failure_reopens_and_restarts_cooldown(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 3)
        clock.now += 30
        await _trip(breaker, 1)

        assert breaker.state is CircuitState.OPEN
        clock.now += 29
        with pytest.raises(CircuitOpenError):
            await breaker.call(Endpoint())
        clock.now += 1
        assert breaker.state is CircuitState.HALF_OPEN

    async def test_only_one_trial_admitted(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 3)
        clock.now += 30

        release = asyncio.Event()
        trial_calls = 0

        async def slow_trial() -> str:
            nonlocal trial_calls
            trial_calls += 1
            await release.wait()
            return "ok"

        trial = asyncio.create_task(breaker.call(slow_trial))
        await asyncio.sleep(0)

        second = Endpoint()
        with pytest.raises(CircuitOpenError):
            await breaker.call(second)

        release.set()
        assert await trial == "ok"
        assert trial_calls == 1
        assert second.calls == 0
        assert breaker.state is CircuitState.CLOSED

    async def test_cancelled_trial_releases_slot(self, clock: FakeClock) -> None:
        breaker = _breaker(clock)
        await _trip(breaker, 3)
        clock.now += 30

        async def hang() -> str:
            await asyncio.Event().wait()
            return "never"

        trial = asyncio.create_task(breaker.call(hang))
        await asyncio.sleep(0)
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        assert await breaker.call(Endpoint()) == "ok"
        assert breaker.state is CircuitState.CLOSED


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_from_settings(self, clock: FakeClock) -> None:
        settings = BreakerSettings(failure_threshold=7, cooldown_seconds=5)
        breaker = CircuitBreaker.from_settings("https://docs.example", settings, clock=clock)
        assert breaker.state is CircuitState.CLOSED
        assert breaker.snapshot().endpoint == "https://docs.example"

    def test_invalid_threshold_rejected(self) -> None:
        with pytest.raises(ValueError):
            CircuitBreaker("x", failure_threshold=0)
