"""Request normalisation and cache key derivation.

Keys have the shape ``ctx:<project>:<sha256>``. The project segment lets the
persistent store drop every entry for one project with a single prefix
invalidation when its fingerprint changes.
"""

from __future__ import annotations

import hashlib
import json
import re
from urllib.parse import quote

KEY_NAMESPACE = "ctx"
NO_PROJECT = "_"

_WHITESPACE_RE = re.compile(r"\s+")


def normalise_text(raw: str) -> str:
    """Lowercase, collapse internal whitespace, strip the ends."""
    return _WHITESPACE_RE.sub(" ", raw).strip().lower()


def project_segment(project_id: str | None) -> str:
    if not project_id or not project_id.strip():
        return NO_PROJECT
    # Percent-encode so ':' never appears in the segment and distinct ids stay
    # distinct; '_' is escaped too, leaving a bare "_" for the absent project.
    return quote(project_id.strip(), safe="/").replace("_", "%5F")


def project_prefix(project_id: str | None) -> str:
    return f"{KEY_NAMESPACE}:{project_segment(project_id)}:"


def derive_cache_key(
    text: str,
    *,
    hints: list[str] | None = None,
    project_id: str | None = None,
    fingerprint: str = "",
    frameworks: frozenset[str] = frozenset(),
) -> str:
    """Build the deterministic cache key for a request.

    Semantically identical requests (case and whitespace differences only)
    map to the same key. Any change to hints, project fingerprint or the
    detected framework set yields a different key.

    Raises ``ValueError`` if the request text is empty after normalisation.
    """
    normalised = normalise_text(text)
    if not normalised:
        raise ValueError("Request text is empty after normalisation")

    material = json.dumps(
        {
            "text": normalised,
            "hints": sorted({normalise_text(h) for h in hints or [] if h.strip()}),
            "fingerprint": fingerprint,
            "frameworks": sorted(frameworks),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"{project_prefix(project_id)}{digest}"
