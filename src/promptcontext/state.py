"""Application state container.

AppState is created once at server startup (inside the FastMCP lifespan context
manager) and injected into every tool handler via the MCP Context object. The
cache tiers and the circuit breaker are process-wide: everything mutates them
through the assembler, never directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from promptcontext.assembler import ContextAssembler
    from promptcontext.breaker import CircuitBreaker
    from promptcontext.config import Settings
    from promptcontext.hot_cache import HotCache
    from promptcontext.protocols import CacheStoreProtocol


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings
    assembler: ContextAssembler
    store: CacheStoreProtocol
    hot_cache: HotCache
    docs_breaker: CircuitBreaker
    http_client: httpx.AsyncClient | None = None
