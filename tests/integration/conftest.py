"""Fixtures wiring real pipeline components around scripted sources."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from promptcontext.assembler import ContextAssembler
from promptcontext.breaker import CircuitBreaker
from promptcontext.config import Settings
from promptcontext.docs_client import DocumentationClient
from promptcontext.errors import PermanentUpstreamError
from promptcontext.facts import FactCollector
from promptcontext.hot_cache import HotCache
from promptcontext.retry import RetryPolicy
from promptcontext.server import build_state

if TYPE_CHECKING:
    from collections.abc import Callable

    from promptcontext.cache import CacheStore
    from promptcontext.state import AppState
    from tests.conftest import FakeTransport, StaticDetector, StaticFactSource

FAST_RETRY = RetryPolicy(max_retries=2, base_delay_seconds=0.01, jitter=False)


@pytest.fixture()
def breaker() -> CircuitBreaker:
    return CircuitBreaker("https://docs.example", ignored=(PermanentUpstreamError,))


@pytest.fixture()
def make_assembler(
    store: CacheStore,
    fake_transport: FakeTransport,
    fact_source: StaticFactSource,
    detector: StaticDetector,
    breaker: CircuitBreaker,
) -> Callable[..., ContextAssembler]:
    """Factory for assemblers sharing the store, transport and breaker fixtures.

    Each call gets its own hot cache, like a second process over the same
    database file.
    """

    def factory(
        *,
        retry: RetryPolicy = FAST_RETRY,
        attempt_timeout: float = 1.0,
        lookup_timeout: float = 5.0,
        facts_timeout: float = 1.0,
        **overrides: Any,
    ) -> ContextAssembler:
        docs = DocumentationClient(
            fake_transport,
            breaker,
            retry,
            attempt_timeout_seconds=attempt_timeout,
            lookup_timeout_seconds=lookup_timeout,
        )
        params: dict[str, Any] = {
            "hot_cache": HotCache(100),
            "store": store,
            "docs": docs,
            "facts": FactCollector(fact_source, timeout_seconds=facts_timeout),
            "detector": detector,
        }
        params.update(overrides)
        return ContextAssembler(**params)

    return factory


@pytest.fixture()
def app_state(
    store: CacheStore, fake_transport: FakeTransport, fact_source: StaticFactSource
) -> AppState:
    """AppState built by the server wiring, with scripted external sources."""
    settings = Settings(
        detector={"known_frameworks": ["x", "react"]},
        retry={"base_delay_seconds": 0.01, "jitter": False},
    )
    return build_state(
        settings,
        store,
        transport=fake_transport,
        fact_collector=FactCollector(fact_source),
    )
