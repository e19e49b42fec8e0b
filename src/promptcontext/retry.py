"""Bounded retry with exponential backoff for transient upstream failures."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import structlog

from promptcontext.errors import TransientUpstreamError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from promptcontext.config import RetrySettings

log = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay_seconds: float = 0.25
    multiplier: float = 2.0
    max_delay_seconds: float = 2.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay_seconds=settings.base_delay_seconds,
            multiplier=settings.multiplier,
            max_delay_seconds=settings.max_delay_seconds,
            jitter=settings.jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(self.base_delay_seconds * (self.multiplier**attempt), self.max_delay_seconds)
        if self.jitter:
            delay *= random.uniform(0.8, 1.2)
        return delay


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientUpstreamError | TimeoutError)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str = "upstream_call",
    should_retry: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds or the retry budget is spent.

    Only exceptions accepted by ``should_retry`` are retried; anything else
    propagates on first occurrence. After ``policy.max_retries`` retries the
    last transient exception propagates.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not should_retry(exc) or attempt >= policy.max_retries:
                raise
            delay = policy.delay_for(attempt)
            attempt += 1
            log.warning(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                max_retries=policy.max_retries,
                delay_seconds=round(delay, 3),
                error=str(exc) or type(exc).__name__,
            )
            await sleep(delay)
