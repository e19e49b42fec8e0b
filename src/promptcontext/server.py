"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the FastMCP lifespan context manager
- Register tools
- Start the correct transport (stdio or streamable HTTP)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

import promptcontext.tools.enhance_context as t_enhance
import promptcontext.tools.health as t_health
import promptcontext.tools.invalidate_project as t_invalidate
from promptcontext import __version__
from promptcontext.assembler import ContextAssembler
from promptcontext.breaker import CircuitBreaker
from promptcontext.cache import CacheStore
from promptcontext.config import Settings
from promptcontext.detector import KeywordFrameworkDetector
from promptcontext.docs_client import DocumentationClient
from promptcontext.errors import PermanentUpstreamError, PromptContextError
from promptcontext.facts import FactCollector, ManifestFactSource, ProjectSnippetSource
from promptcontext.hot_cache import HotCache
from promptcontext.retry import RetryPolicy
from promptcontext.schedulers import run_cache_cleanup_scheduler
from promptcontext.state import AppState
from promptcontext.transport import Context7Transport, build_http_client

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import httpx

    from promptcontext.protocols import DocsTransport

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout is reserved for the MCP JSON-RPC stream
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_state(
    settings: Settings,
    store: CacheStore,
    *,
    transport: DocsTransport,
    http_client: httpx.AsyncClient | None = None,
    fact_collector: FactCollector | None = None,
) -> AppState:
    """Wire every pipeline component from settings. Shared by lifespan and tests."""
    breaker = CircuitBreaker.from_settings(
        settings.docs.url,
        settings.breaker,
        ignored=(PermanentUpstreamError,),
    )
    docs = DocumentationClient(
        transport,
        breaker,
        RetryPolicy.from_settings(settings.retry),
        attempt_timeout_seconds=settings.docs.attempt_timeout_seconds,
        lookup_timeout_seconds=settings.docs.lookup_timeout_seconds,
        max_libraries=settings.docs.max_libraries,
    )
    hot_cache = HotCache(settings.hot_cache.capacity, max_ttl_seconds=settings.hot_cache.ttl_seconds)
    facts = fact_collector or FactCollector(
        ManifestFactSource(),
        ProjectSnippetSource(
            max_snippets=settings.facts.max_snippets,
            max_snippet_chars=settings.facts.snippet_max_chars,
        ),
        timeout_seconds=settings.facts.timeout_seconds,
    )
    detector = KeywordFrameworkDetector(
        settings.detector.known_frameworks,
        fuzzy_score_cutoff=settings.detector.fuzzy_score_cutoff,
    )
    assembler = ContextAssembler.from_settings(
        settings,
        hot_cache=hot_cache,
        store=store,
        docs=docs,
        facts=facts,
        detector=detector,
    )
    return AppState(
        settings=settings,
        assembler=assembler,
        store=store,
        hot_cache=hot_cache,
        docs_breaker=breaker,
        http_client=http_client,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    _setup_logging(settings)

    log.info(
        "server_starting",
        version=__version__,
        transport=settings.server.transport,
    )

    db_path = Path(settings.cache.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    store = CacheStore(db, max_size_bytes=settings.cache.max_size_bytes)
    await store.init_db()

    http_client = build_http_client(settings.docs)
    transport = Context7Transport(http_client, settings.docs.url)
    state = build_state(settings, store, transport=transport, http_client=http_client)

    cache_cleanup_task = asyncio.create_task(run_cache_cleanup_scheduler(state))

    log.info(
        "server_started",
        version=__version__,
        transport=settings.server.transport,
        token_budget=settings.ranker.token_budget,
        docs_url=settings.docs.url,
    )

    try:
        yield state
    finally:
        cache_cleanup_task.cancel()
        with suppress(asyncio.CancelledError):
            await cache_cleanup_task
        await http_client.aclose()
        await db.close()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("promptcontext", lifespan=lifespan)
# FastMCP doesn't expose a version kwarg, so set it on the underlying Server
# so the MCP initialize handshake reports our version, not the SDK's.
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: PromptContextError) -> CallToolResult:
    """Convert a PromptContextError to the MCP tool error result envelope."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(error.to_dict()))],
        isError=True,
    )


@mcp.tool()
async def enhance_context(
    request: str,
    ctx: Context,
    hints: list[str] | None = None,
    project_id: str | None = None,
) -> object:
    """Assemble ranked project and library context for a coding request.

    Returns a token-budgeted bundle of project facts, code snippets and
    documentation fragments, plus cache-hit and degradation flags. A degraded
    response is still usable; retry later for fuller context.
    """
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_enhance.handle(request, state, hints=hints, project_id=project_id)
    except PromptContextError as exc:
        log.warning(
            "tool_error",
            tool="enhance_context",
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="enhance_context", exc_info=True)
        raise


@mcp.tool()
async def invalidate_project(project_id: str, ctx: Context) -> object:
    """Drop every cached context bundle for a project."""
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_invalidate.handle(project_id, state)
    except PromptContextError as exc:
        log.warning(
            "tool_error",
            tool="invalidate_project",
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="invalidate_project", exc_info=True)
        raise


@mcp.tool()
async def health(ctx: Context) -> object:
    """Report cache tier and documentation circuit breaker status."""
    state: AppState = ctx.request_context.lifespan_context
    return await t_health.handle(state)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()

    if settings.server.transport == "http":
        _setup_logging(settings)
        mcp.settings.host = settings.server.host
        mcp.settings.port = settings.server.port
        mcp.run(transport="streamable-http")
        return

    mcp.run()


if __name__ == "__main__":
    main()
