"""Protocol interfaces for swappable components.

The assembler and AppState reference these protocols, not the concrete
implementations. This allows:
- Tests to use lightweight in-memory implementations
- Other documentation backends or project scanners to be plugged in without
  touching the assembly pipeline
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from promptcontext.models.cache import CacheEntry
    from promptcontext.models.context import CodeSnippet, ContextBundle, ProjectFact


class CacheStoreProtocol(Protocol):
    """Interface for the persistent cache tier.

    Implementations raise ``StoreUnavailable`` on backing-medium failures.
    """

    async def get(self, key: str) -> CacheEntry | None: ...

    async def put(
        self, key: str, bundle: ContextBundle, ttl_seconds: float
    ) -> CacheEntry | None: ...

    async def invalidate_prefix(self, prefix: str) -> int: ...

    async def size_bytes(self) -> int: ...

    async def cleanup_if_due(self, interval_hours: int) -> None: ...


class DocsTransport(Protocol):
    """Interface for the raw documentation source call."""

    async def fetch_docs(self, library: str, *, topic: str = "", tokens: int = 2000) -> str: ...


class ProjectFactSource(Protocol):
    """Black-box producer of facts about a project."""

    async def facts(self, project_id: str) -> list[ProjectFact]: ...

    async def fingerprint(self, project_id: str) -> str: ...


class SnippetSource(Protocol):
    """Black-box producer of project code snippets matched to a request."""

    async def snippets(self, project_id: str, request_text: str) -> list[CodeSnippet]: ...


class FrameworkDetector(Protocol):
    """Detects the framework identifiers relevant to a request."""

    def detect(self, text: str, hints: list[str]) -> frozenset[str]: ...
