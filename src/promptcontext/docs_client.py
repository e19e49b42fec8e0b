"""Resilient client for the external documentation source.

Each library lookup goes through retry → circuit breaker → per-attempt
timeout → transport. Lookups are best-effort: any failure removes that
library's contribution and marks the result degraded, but ``lookup`` itself
never raises. A permanent rejection (unknown library, 4xx) is an answer from
a healthy endpoint: it is reported in ``rejected`` and does not degrade.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from promptcontext.errors import CircuitOpenError, PermanentUpstreamError, UpstreamError
from promptcontext.models.context import ContextItem, DocLookupResult, DocQuery, SourceKind
from promptcontext.parser import split_fragments
from promptcontext.retry import RetryPolicy, with_retry
from promptcontext.tokens import estimate_tokens

if TYPE_CHECKING:
    from promptcontext.breaker import CircuitBreaker
    from promptcontext.protocols import DocsTransport

log = structlog.get_logger()

PERMANENT_FAILURE = "permanent_failure"

TOPIC_KEYWORDS: tuple[str, ...] = (
    "hooks",
    "components",
    "routing",
    "middleware",
    "api",
    "state",
    "props",
    "forms",
    "authentication",
    "testing",
)


def extract_topic(request_text: str) -> str:
    """Pick the first known topic keyword mentioned in the request, or ``""``."""
    lowered = request_text.lower()
    for keyword in TOPIC_KEYWORDS:
        if keyword in lowered or keyword.rstrip("s") in lowered.split():
            return keyword
    return ""


class DocumentationClient:
    """Fetches documentation fragments for detected libraries."""

    def __init__(
        self,
        transport: DocsTransport,
        breaker: CircuitBreaker,
        retry_policy: RetryPolicy,
        *,
        attempt_timeout_seconds: float = 5.0,
        lookup_timeout_seconds: float = 12.0,
        max_libraries: int = 3,
    ) -> None:
        self._transport = transport
        self._breaker = breaker
        self._retry_policy = retry_policy
        self._attempt_timeout = attempt_timeout_seconds
        self._lookup_timeout = lookup_timeout_seconds
        self._max_libraries = max_libraries

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def lookup(self, query: DocQuery) -> DocLookupResult:
        """Look up every library of ``query`` concurrently, bounded by the lookup timeout."""
        libraries = list(dict.fromkeys(query.libraries))[: self._max_libraries]
        if not libraries:
            return DocLookupResult()

        tasks = [asyncio.create_task(self._lookup_library(lib, query)) for lib in libraries]
        done, pending = await asyncio.wait(tasks, timeout=self._lookup_timeout)
        for task in pending:
            task.cancel()

        items: list[ContextItem] = []
        failures: dict[str, str] = {}
        rejected: dict[str, str] = {}
        for library, task in zip(libraries, tasks, strict=True):
            if task in pending:
                failures[library] = "timeout"
                continue
            library_items, reason = task.result()
            if reason == PERMANENT_FAILURE:
                rejected[library] = reason
            elif reason is not None:
                failures[library] = reason
            items.extend(library_items)

        if failures:
            log.warning("docs_lookup_degraded", failures=failures)
        return DocLookupResult(
            items=items, degraded=bool(failures), failures=failures, rejected=rejected
        )

    async def _lookup_library(
        self, library: str, query: DocQuery
    ) -> tuple[list[ContextItem], str | None]:
        async def attempt() -> str:
            async with asyncio.timeout(self._attempt_timeout):
                return await self._transport.fetch_docs(
                    library, topic=query.topic, tokens=query.tokens_per_library
                )

        try:
            text = await with_retry(
                lambda: self._breaker.call(attempt),
                self._retry_policy,
                operation=f"docs:{library}",
            )
        except CircuitOpenError:
            log.info("docs_lookup_short_circuited", library=library, endpoint=self._breaker.endpoint)
            return [], "circuit_open"
        except PermanentUpstreamError as exc:
            log.warning("docs_lookup_rejected", library=library, error=str(exc))
            return [], PERMANENT_FAILURE
        except (UpstreamError, TimeoutError) as exc:
            log.warning("docs_lookup_exhausted", library=library, error=str(exc) or "timeout")
            return [], "retries_exhausted"
        except Exception:
            log.error("docs_lookup_unexpected_error", library=library, exc_info=True)
            return [], "error"

        return _to_items(library, text), None


def _to_items(library: str, text: str) -> list[ContextItem]:
    return [
        ContextItem(
            kind=SourceKind.DOC,
            content=fragment.text,
            tokens=estimate_tokens(fragment.text),
            tag=library.lower(),
            source=f"docs:{library}",
        )
        for fragment in split_fragments(text)
    ]
