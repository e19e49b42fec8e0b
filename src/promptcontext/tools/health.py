"""Tool handler for health: cache tier and circuit breaker status."""

from __future__ import annotations

from typing import TYPE_CHECKING

from promptcontext import __version__
from promptcontext.breaker import CircuitState
from promptcontext.errors import StoreUnavailable
from promptcontext.models.tools import BreakerStatus, HealthOutput

if TYPE_CHECKING:
    from promptcontext.state import AppState


async def handle(state: AppState) -> dict:
    try:
        size: int | None = await state.store.size_bytes()
        store_available = True
    except StoreUnavailable:
        size = None
        store_available = False

    snapshot = state.docs_breaker.snapshot()
    healthy = store_available and snapshot.state is CircuitState.CLOSED

    output = HealthOutput(
        status="ok" if healthy else "degraded",
        version=__version__,
        hot_cache_entries=len(state.hot_cache),
        hot_cache_capacity=state.hot_cache.capacity,
        store_size_bytes=size,
        store_available=store_available,
        docs_breaker=BreakerStatus(
            endpoint=snapshot.endpoint,
            state=snapshot.state,
            recent_failures=snapshot.recent_failures,
        ),
    )
    return output.model_dump(mode="json")
