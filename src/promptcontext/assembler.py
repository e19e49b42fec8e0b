"""Context assembly orchestrator.

Per request:

    KeyDerivation → HotCacheLookup ─hit─▶ Done
                         │miss
                         ▼
              (single-flight per key)
                 CacheStoreLookup ─hit─▶ PromoteToHotCache → Done
                         │miss
                         ▼
      ParallelGather(docs, facts) → Rank → BudgetFit → PersistBoth → Done

Only a malformed request fails the caller. Every enrichment or cache-tier
failure degrades the response instead; degraded bundles are cached with a
shorter TTL so an outage heals out of the cache quickly.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from typing import TYPE_CHECKING, Any

import structlog

from promptcontext.docs_client import extract_topic
from promptcontext.errors import ErrorCode, PromptContextError, StoreUnavailable
from promptcontext.keys import derive_cache_key, project_prefix
from promptcontext.models.context import (
    AssemblyRequest,
    AssemblyResult,
    ContextBundle,
    ContextItem,
    DocQuery,
)
from promptcontext.ranker import RankerConfig, build_bundle
from promptcontext.singleflight import SingleFlight

if TYPE_CHECKING:
    from promptcontext.config import Settings
    from promptcontext.docs_client import DocumentationClient
    from promptcontext.facts import FactCollector
    from promptcontext.hot_cache import HotCache
    from promptcontext.protocols import CacheStoreProtocol, FrameworkDetector

log = structlog.get_logger()

DOCS_SOURCE = "docs"
FACTS_SOURCE = "project_facts"


class ContextAssembler:
    """Composes the cache tiers, enrichment sources and ranker into one cycle."""

    def __init__(
        self,
        *,
        hot_cache: HotCache,
        store: CacheStoreProtocol,
        docs: DocumentationClient | None,
        facts: FactCollector,
        detector: FrameworkDetector,
        ranker_config: RankerConfig | None = None,
        token_budget: int = 2000,
        ttl_seconds: float = 3600.0,
        degraded_ttl_seconds: float = 300.0,
        deadline_seconds: float = 15.0,
        max_request_chars: int = 8000,
        tokens_per_library: int = 2000,
        max_tracked_projects: int = 1024,
    ) -> None:
        self._hot = hot_cache
        self._store = store
        self._docs = docs
        self._facts = facts
        self._detector = detector
        self._ranker_config = ranker_config or RankerConfig()
        self._token_budget = token_budget
        self._ttl = ttl_seconds
        self._degraded_ttl = degraded_ttl_seconds
        self._deadline = deadline_seconds
        self._max_request_chars = max_request_chars
        self._tokens_per_library = tokens_per_library
        self._inflight: SingleFlight[tuple[ContextBundle, str | None]] = SingleFlight()
        self._max_tracked_projects = max_tracked_projects
        self._fingerprints: OrderedDict[str, str] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: Settings, **components: Any) -> ContextAssembler:
        return cls(
            ranker_config=RankerConfig.from_settings(settings.ranker),
            token_budget=settings.ranker.token_budget,
            ttl_seconds=settings.cache.ttl_seconds,
            degraded_ttl_seconds=settings.cache.degraded_ttl_seconds,
            deadline_seconds=settings.assembler.deadline_seconds,
            max_request_chars=settings.assembler.max_request_chars,
            max_tracked_projects=settings.assembler.max_tracked_projects,
            tokens_per_library=settings.docs.tokens_per_library,
            **components,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def assemble(self, request: AssemblyRequest) -> AssemblyResult:
        """Return the context bundle for ``request``, from cache when possible.

        Raises ``PromptContextError`` (INVALID_REQUEST) when the request
        cannot be keyed. Never raises for enrichment or cache failures.
        """
        started = time.perf_counter()
        deadline = asyncio.get_running_loop().time() + self._deadline
        self._validate(request)

        frameworks = self._detector.detect(request.text, request.hints)
        fingerprint = await self._facts.fingerprint(request.project_id)
        await self._invalidate_if_changed(request.project_id, fingerprint)

        try:
            key = derive_cache_key(
                request.text,
                hints=request.hints,
                project_id=request.project_id,
                fingerprint=fingerprint,
                frameworks=frameworks,
            )
        except ValueError as exc:
            raise _malformed(str(exc)) from exc

        bound = log.bind(cache_key=key, project_id=request.project_id)

        entry = self._hot.get(key)
        if entry is not None:
            bound.info("cache_hit", tier="memory")
            return _result(key, entry.bundle, "memory", frameworks, started)

        (bundle, tier), shared = await self._inflight.do(
            key, lambda: self._resolve_miss(key, request, frameworks, deadline)
        )
        bound.info(
            "assembly_complete",
            tier=tier,
            shared=shared,
            items=len(bundle.items),
            total_tokens=bundle.total_tokens,
            degraded=bundle.degraded,
        )
        return _result(key, bundle, tier, frameworks, started)

    async def invalidate_project(self, project_id: str | None) -> int:
        """Drop every cached bundle of one project from both tiers.

        Returns the number of persistent entries deleted (0 if the store is
        unavailable).
        """
        prefix = project_prefix(project_id)
        hot_deleted = self._hot.invalidate_prefix(prefix)
        try:
            store_deleted = await self._store.invalidate_prefix(prefix)
        except StoreUnavailable:
            log.warning("cache_store_unavailable", operation="invalidate", prefix=prefix)
            store_deleted = 0
        log.info("project_invalidated", prefix=prefix, hot=hot_deleted, store=store_deleted)
        return store_deleted

    # ------------------------------------------------------------------
    # Miss path
    # ------------------------------------------------------------------

    async def _resolve_miss(
        self,
        key: str,
        request: AssemblyRequest,
        frameworks: frozenset[str],
        deadline: float,
    ) -> tuple[ContextBundle, str | None]:
        try:
            entry = await self._store.get(key)
        except StoreUnavailable:
            log.warning("cache_store_unavailable", operation="get", cache_key=key)
            entry = None

        if entry is not None:
            log.info("cache_hit", tier="store", cache_key=key)
            self._hot.put(key, entry)
            return entry.bundle, "store"

        log.info("cache_miss", cache_key=key, frameworks=sorted(frameworks))
        bundle = await self._gather(request, frameworks, deadline)
        await self._persist(key, bundle)
        return bundle, None

    async def _gather(
        self,
        request: AssemblyRequest,
        frameworks: frozenset[str],
        deadline: float,
    ) -> ContextBundle:
        tasks: dict[str, asyncio.Task] = {
            FACTS_SOURCE: asyncio.create_task(
                self._facts.collect(request.project_id, request.text)
            ),
        }
        if self._docs is not None and frameworks:
            query = DocQuery(
                request_text=request.text,
                libraries=sorted(frameworks),
                topic=extract_topic(request.text),
                tokens_per_library=self._tokens_per_library,
            )
            tasks[DOCS_SOURCE] = asyncio.create_task(self._docs.lookup(query))

        timeout = max(0.0, deadline - asyncio.get_running_loop().time())
        _done, pending = await asyncio.wait(tasks.values(), timeout=timeout)
        for task in pending:
            task.cancel()

        items: list[ContextItem] = []
        unavailable: list[str] = []
        for source, task in tasks.items():
            if task in pending:
                log.warning("enrichment_deadline_exceeded", source=source)
                unavailable.append(source)
                continue
            if task.exception() is not None:
                log.error("enrichment_source_error", source=source, exc_info=task.exception())
                unavailable.append(source)
                continue
            outcome = task.result()
            if source == DOCS_SOURCE:
                items.extend(outcome.items)
                unavailable.extend(f"{DOCS_SOURCE}:{lib}" for lib in outcome.failures)
            else:
                items.extend(outcome.items)
                unavailable.extend(outcome.unavailable)

        return build_bundle(
            items,
            request.text,
            frameworks,
            self._token_budget,
            self._ranker_config,
            unavailable_sources=unavailable,
        )

    async def _persist(self, key: str, bundle: ContextBundle) -> None:
        """Write to the store, then promote to memory.

        The in-memory copy becomes visible only after the durable write
        succeeded. If the store is down, or size eviction removed the entry
        it just wrote, neither tier holds it.
        """
        ttl = self._degraded_ttl if bundle.degraded else self._ttl
        try:
            entry = await self._store.put(key, bundle, ttl)
        except StoreUnavailable:
            log.warning("cache_store_unavailable", operation="put", cache_key=key)
            return
        if entry is None:
            log.info("cache_not_promoted", cache_key=key, reason="evicted_on_write")
            return
        self._hot.put(key, entry)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, request: AssemblyRequest) -> None:
        if not request.text or not request.text.strip():
            raise _malformed("Request text is empty")
        if len(request.text) > self._max_request_chars:
            raise _malformed(
                f"Request text is {len(request.text)} characters; "
                f"the limit is {self._max_request_chars}"
            )

    async def _invalidate_if_changed(self, project_id: str | None, fingerprint: str) -> None:
        if not project_id or not fingerprint:
            return
        previous = self._fingerprints.pop(project_id, None)
        self._fingerprints[project_id] = fingerprint
        while len(self._fingerprints) > self._max_tracked_projects:
            self._fingerprints.popitem(last=False)
        if previous is not None and previous != fingerprint:
            log.info("project_fingerprint_changed", project_id=project_id)
            await self.invalidate_project(project_id)


def _malformed(message: str) -> PromptContextError:
    return PromptContextError(
        code=ErrorCode.INVALID_REQUEST,
        message=message,
        suggestion="Provide a non-empty coding request within the configured length limit.",
        recoverable=False,
    )


def _result(
    key: str,
    bundle: ContextBundle,
    tier: str | None,
    frameworks: frozenset[str],
    started: float,
) -> AssemblyResult:
    return AssemblyResult(
        cache_key=key,
        bundle=bundle,
        cache_hit=tier is not None,
        cache_tier=tier,
        degraded=bundle.degraded,
        unavailable_sources=bundle.unavailable_sources,
        frameworks=sorted(frameworks),
        elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
    )
