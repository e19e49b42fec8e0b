"""Context ranking and token-budget fitting.

Pure business logic: receives ContextItems, returns ordered selections. No
knowledge of caching, AppState or I/O, and fully deterministic: identical
inputs always produce identical output.

Score of an item:

    kind_weight[kind] + lexical_overlap(request, item) + framework_boost·[tag ∈ frameworks]

Selection walks items in fixed kind priority (facts, snippets, docs), each
kind sorted by descending score with ties kept in insertion order, and adds
items greedily while the running token total stays within budget.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from promptcontext.models.context import KIND_PRIORITY, ContextBundle, ContextItem, SourceKind
from promptcontext.tokens import estimate_tokens, truncate_to_tokens

if TYPE_CHECKING:
    from collections.abc import Iterable

    from promptcontext.config import RankerSettings

_TERM_RE = re.compile(r"[a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")

STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "create", "for",
        "from", "how", "i", "in", "is", "it", "make", "me", "my", "of", "on",
        "or", "please", "that", "the", "this", "to", "use", "using", "with", "you",
    }
)  # fmt: skip


def terms(text: str) -> set[str]:
    return {t for t in _TERM_RE.findall(text.lower()) if t not in STOP_WORDS and len(t) > 1}


@dataclass(frozen=True)
class RankerConfig:
    framework_boost: float = 0.5
    kind_weights: dict[SourceKind, float] = field(
        default_factory=lambda: {
            SourceKind.FACT: 1.0,
            SourceKind.SNIPPET: 0.8,
            SourceKind.DOC: 0.6,
        }
    )

    @classmethod
    def from_settings(cls, settings: RankerSettings) -> RankerConfig:
        return cls(
            framework_boost=settings.framework_boost,
            kind_weights={
                SourceKind.FACT: settings.fact_weight,
                SourceKind.SNIPPET: settings.snippet_weight,
                SourceKind.DOC: settings.doc_weight,
            },
        )


@dataclass
class FitResult:
    selected: list[ContextItem]
    skipped: list[ContextItem]
    total_tokens: int


def dedupe(items: Iterable[ContextItem]) -> list[ContextItem]:
    """Drop items whose normalised content was already seen. First occurrence wins."""
    seen: set[str] = set()
    unique: list[ContextItem] = []
    for item in items:
        signature = _WHITESPACE_RE.sub(" ", item.content).strip().lower()
        if not signature or signature in seen:
            continue
        seen.add(signature)
        unique.append(item)
    return unique


def score_item(
    item: ContextItem,
    request_terms: set[str],
    frameworks: frozenset[str],
    config: RankerConfig,
) -> float:
    lexical = 0.0
    if request_terms:
        lexical = len(request_terms & terms(item.content)) / len(request_terms)
    boost = config.framework_boost if item.tag is not None and item.tag in frameworks else 0.0
    return round(config.kind_weights.get(item.kind, 0.0) + lexical + boost, 6)


def rank(
    items: Iterable[ContextItem],
    request_text: str,
    frameworks: frozenset[str],
    config: RankerConfig | None = None,
) -> list[ContextItem]:
    """Score, dedupe and order items by kind priority, then descending score."""
    config = config or RankerConfig()
    request_terms = terms(request_text)
    lowered = frozenset(f.lower() for f in frameworks)

    scored = [
        item.model_copy(update={"score": score_item(item, request_terms, lowered, config)})
        for item in dedupe(items)
    ]

    ordered: list[ContextItem] = []
    for kind in KIND_PRIORITY:
        # sorted() is stable, so equal scores keep insertion order.
        ordered.extend(
            sorted((i for i in scored if i.kind == kind), key=lambda i: i.score, reverse=True)
        )
    return ordered


def fit_budget(ranked: list[ContextItem], budget: int) -> FitResult:
    """Greedily select items in order while the token total stays within ``budget``.

    An item that does not fit is skipped, never cut, unless nothing has been
    selected yet, in which case it is truncated to fill the budget.
    """
    selected: list[ContextItem] = []
    skipped: list[ContextItem] = []
    total = 0

    for item in ranked:
        if total + item.tokens <= budget:
            selected.append(item)
            total += item.tokens
            continue
        if not selected and budget > 0:
            content = truncate_to_tokens(item.content, budget)
            tokens = estimate_tokens(content)
            selected.append(item.model_copy(update={"content": content, "tokens": tokens}))
            total += tokens
            continue
        skipped.append(item)

    return FitResult(selected=selected, skipped=skipped, total_tokens=total)


def build_bundle(
    items: Iterable[ContextItem],
    request_text: str,
    frameworks: frozenset[str],
    budget: int,
    config: RankerConfig | None = None,
    *,
    unavailable_sources: list[str] | None = None,
) -> ContextBundle:
    fitted = fit_budget(rank(items, request_text, frameworks, config), budget)
    unavailable = sorted(set(unavailable_sources or []))
    return ContextBundle(
        items=fitted.selected,
        total_tokens=fitted.total_tokens,
        token_budget=budget,
        degraded=bool(unavailable),
        unavailable_sources=unavailable,
    )
