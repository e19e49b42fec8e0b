from __future__ import annotations

from promptcontext.models.cache import CacheEntry
from promptcontext.models.context import (
    KIND_PRIORITY,
    AssemblyRequest,
    AssemblyResult,
    CodeSnippet,
    ContextBundle,
    ContextItem,
    DocLookupResult,
    DocQuery,
    ProjectFact,
    SourceKind,
)
from promptcontext.models.tools import (
    EnhanceContextInput,
    EnhanceContextOutput,
    HealthOutput,
    InvalidateProjectInput,
    InvalidateProjectOutput,
)

__all__ = [
    # context
    "SourceKind",
    "KIND_PRIORITY",
    "ContextItem",
    "ContextBundle",
    "AssemblyRequest",
    "AssemblyResult",
    "ProjectFact",
    "CodeSnippet",
    "DocQuery",
    "DocLookupResult",
    # cache
    "CacheEntry",
    # tools
    "EnhanceContextInput",
    "EnhanceContextOutput",
    "InvalidateProjectInput",
    "InvalidateProjectOutput",
    "HealthOutput",
]
