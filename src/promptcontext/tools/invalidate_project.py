"""Tool handler for invalidate_project."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from promptcontext.errors import ErrorCode, PromptContextError
from promptcontext.models.tools import InvalidateProjectInput, InvalidateProjectOutput

if TYPE_CHECKING:
    from promptcontext.state import AppState


async def handle(project_id: str, state: AppState) -> dict:
    """Handle an invalidate_project tool call."""
    log = structlog.get_logger().bind(tool="invalidate_project", project_id=project_id)
    log.info("handler_called")

    try:
        validated = InvalidateProjectInput(project_id=project_id)
    except ValueError as exc:
        raise PromptContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide the project identifier used in enhance_context calls.",
            recoverable=False,
        ) from exc

    deleted = await state.assembler.invalidate_project(validated.project_id)
    return InvalidateProjectOutput(project_id=validated.project_id, deleted=deleted).model_dump(
        mode="json"
    )
