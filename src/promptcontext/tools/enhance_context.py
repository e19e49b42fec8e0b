"""Tool handler for enhance_context.

Receives AppState, validates input, delegates to the ContextAssembler and
returns a structured dict. No MCP or FastMCP imports; server.py handles the
MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from promptcontext.errors import ErrorCode, PromptContextError
from promptcontext.models.context import AssemblyRequest
from promptcontext.models.tools import EnhanceContextInput, EnhanceContextOutput

if TYPE_CHECKING:
    from promptcontext.state import AppState


async def handle(
    request: str,
    state: AppState,
    hints: list[str] | None = None,
    project_id: str | None = None,
) -> dict:
    """Handle an enhance_context tool call."""
    log = structlog.get_logger().bind(tool="enhance_context", project_id=project_id)
    log.info("handler_called")

    try:
        validated = EnhanceContextInput(request=request, hints=hints or [], project_id=project_id)
    except ValueError as exc:
        raise PromptContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a non-empty request; hints must be a short list of strings.",
            recoverable=False,
        ) from exc

    result = await state.assembler.assemble(
        AssemblyRequest(
            text=validated.request,
            hints=validated.hints,
            project_id=validated.project_id,
        )
    )
    log.info(
        "enhance_complete",
        cache_hit=result.cache_hit,
        degraded=result.degraded,
        items=len(result.bundle.items),
    )

    output = EnhanceContextOutput(
        bundle=result.bundle,
        cache_hit=result.cache_hit,
        cache_tier=result.cache_tier,
        degraded=result.degraded,
        unavailable_sources=result.unavailable_sources,
        frameworks=result.frameworks,
        elapsed_ms=result.elapsed_ms,
    )
    return output.model_dump(mode="json")
