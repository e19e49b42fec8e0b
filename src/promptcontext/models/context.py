from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class SourceKind(StrEnum):
    FACT = "fact"
    SNIPPET = "snippet"
    DOC = "doc"


# Fixed interleaving order of a bundle: facts, then snippets, then docs.
KIND_PRIORITY: tuple[SourceKind, ...] = (SourceKind.FACT, SourceKind.SNIPPET, SourceKind.DOC)


class ContextItem(BaseModel):
    """A single candidate fact, code snippet, or documentation fragment."""

    model_config = ConfigDict(frozen=True)

    kind: SourceKind
    content: str
    tokens: int = Field(ge=0)
    score: float = 0.0
    tag: str | None = None  # Library / framework the item belongs to
    source: str = ""  # e.g. "manifest", "context7:/vercel/next.js", "src/app.py"


class ContextBundle(BaseModel):
    """Ranked, budget-fitted items selected for one request."""

    items: list[ContextItem] = []
    total_tokens: int = 0
    token_budget: int
    degraded: bool = False
    unavailable_sources: list[str] = []


class AssemblyRequest(BaseModel):
    text: str
    hints: list[str] = []
    project_id: str | None = None


class AssemblyResult(BaseModel):
    """What the assembler hands back to the entry point."""

    cache_key: str
    bundle: ContextBundle
    cache_hit: bool
    cache_tier: str | None = None  # "memory" | "store" | None on a fresh assembly
    degraded: bool
    unavailable_sources: list[str] = []
    frameworks: list[str] = []
    elapsed_ms: float = 0.0


class ProjectFact(BaseModel):
    """Output of a ProjectFactSource: one fact about the current project."""

    model_config = ConfigDict(frozen=True)

    text: str
    tag: str | None = None


class CodeSnippet(BaseModel):
    """Output of a SnippetSource: a piece of project code matched to the request."""

    model_config = ConfigDict(frozen=True)

    content: str
    path: str = ""
    tag: str | None = None


class DocQuery(BaseModel):
    request_text: str
    libraries: list[str]
    topic: str = ""
    tokens_per_library: int = 2000


class DocLookupResult(BaseModel):
    items: list[ContextItem] = []
    degraded: bool = False
    failures: dict[str, str] = {}  # library → reason
    rejected: dict[str, str] = {}  # library → reason, answered but not served
