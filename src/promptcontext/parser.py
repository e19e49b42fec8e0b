"""Documentation fragment splitter.

Single-pass algorithm that cuts documentation text into self-contained
fragments. A new fragment starts at:
  - a separator line of 10+ dashes or equals signs (Context7 snippet format)
  - an H1–H3 Markdown heading outside a fenced code block

Fragments keep their own text verbatim; empty fragments are dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_HEADING_RE = re.compile(r"^(#{1,3}) (.+)")
_SEPARATOR_RE = re.compile(r"^\s*(-{10,}|={10,})\s*$")
_TITLE_RE = re.compile(r"^TITLE:\s*(.+)")


@dataclass(frozen=True)
class DocFragment:
    title: str
    text: str


def split_fragments(content: str) -> list[DocFragment]:
    """Split documentation text into fragments in document order."""
    fragments: list[DocFragment] = []
    current: list[str] = []
    title = ""

    in_code_block = False
    fence: str | None = None

    def flush() -> None:
        text = "\n".join(current).strip()
        if text:
            fragments.append(DocFragment(title=title, text=text))
        current.clear()

    for line in content.splitlines():
        stripped = line.strip()

        # Rule 1: code block tracking
        if stripped.startswith("```") or stripped.startswith("~~~"):
            current_fence = stripped[:3]
            if not in_code_block:
                in_code_block = True
                fence = current_fence
            elif current_fence == fence:
                in_code_block = False
                fence = None
            current.append(line)
            continue

        if in_code_block:
            current.append(line)
            continue

        # Rule 2: separators end a fragment and are not kept
        if _SEPARATOR_RE.match(line):
            flush()
            title = ""
            continue

        # Rule 3: headings start a fragment
        heading = _HEADING_RE.match(line)
        if heading:
            flush()
            title = heading.group(2).strip()
            current.append(line)
            continue

        titled = _TITLE_RE.match(stripped)
        if titled and not current:
            title = titled.group(1).strip()

        current.append(line)

    flush()
    return fragments
