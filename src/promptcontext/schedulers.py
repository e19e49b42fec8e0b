"""Background scheduler coroutine for persistent cache cleanup."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from promptcontext.state import AppState

log = structlog.get_logger()


async def run_cache_cleanup_scheduler(state: AppState) -> None:
    """Run cache cleanup at startup and (HTTP mode) on the configured interval."""
    interval_hours = state.settings.cache.cleanup_interval_hours

    # Both transports: run at startup, skipping if it ran recently.
    await state.store.cleanup_if_due(interval_hours)

    if state.settings.server.transport != "http":
        return

    # HTTP long-running mode: repeat on the configured interval.
    while True:
        await asyncio.sleep(interval_hours * 3600)
        try:
            await state.store.cleanup_if_due(interval_hours)
        except Exception:
            log.warning("cache_cleanup_scheduler_error", exc_info=True)
