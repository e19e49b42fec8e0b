"""Keyword framework detection.

Pure business logic, no I/O. Explicit hints are trusted verbatim; request
terms are matched against the known-framework list, exactly first and then
fuzzily (Levenshtein ratio) to tolerate typos such as "pydantc".
"""

from __future__ import annotations

import re

from rapidfuzz import fuzz, process

_TERM_RE = re.compile(r"[a-z0-9][a-z0-9.+#-]*")

# Spellings that normalise to a known framework identifier.
_ALIASES: dict[str, str] = {
    "next.js": "nextjs",
    "next": "nextjs",
    "vue.js": "vue",
    "vuejs": "vue",
    "reactjs": "react",
    "react.js": "react",
    "ts": "typescript",
    "tailwind": "tailwindcss",
}


class KeywordFrameworkDetector:
    """Default FrameworkDetector implementation."""

    def __init__(self, known_frameworks: list[str], *, fuzzy_score_cutoff: int = 88) -> None:
        self._known = [name.lower() for name in known_frameworks]
        self._known_set = frozenset(self._known)
        self._cutoff = fuzzy_score_cutoff

    def detect(self, text: str, hints: list[str]) -> frozenset[str]:
        detected: set[str] = {hint.strip().lower() for hint in hints if hint.strip()}

        for raw in _TERM_RE.findall(text.lower()):
            term = raw.rstrip(".")
            term = _ALIASES.get(term, term)
            if term in self._known_set:
                detected.add(term)
                continue
            # Short terms fuzz-match too eagerly ("vue" ~ "use").
            if len(term) < 5 or not self._known:
                continue
            match = process.extractOne(
                term, self._known, scorer=fuzz.ratio, score_cutoff=self._cutoff
            )
            if match is not None:
                detected.add(match[0])

        return frozenset(detected)
