"""Token estimation.

A character-ratio heuristic (~4 characters per token) is accurate enough for
budget fitting and keeps ranking free of any tokenizer dependency.
"""

from __future__ import annotations

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    if not text or not text.strip():
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut ``text`` so that ``estimate_tokens`` of the result is <= max_tokens."""
    if max_tokens <= 0:
        return ""
    return text[: max_tokens * CHARS_PER_TOKEN]
