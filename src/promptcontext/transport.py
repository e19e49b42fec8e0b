"""Context7-compatible documentation transport.

Speaks MCP JSON-RPC over HTTP: ``resolve-library-id`` maps a framework name
to a library ID, ``get-library-docs`` returns documentation text for it. The
server may answer with plain JSON or a server-sent-event stream; both are
accepted. The transport receives an httpx.AsyncClient via constructor
injection; the lifespan owns the client lifecycle.

Failures are classified here, where the HTTP details are visible:
``TransientUpstreamError`` for anything worth retrying, and
``PermanentUpstreamError`` for everything else.
"""

from __future__ import annotations

import itertools
import json
import re
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from promptcontext import __version__
from promptcontext.errors import PermanentUpstreamError, TransientUpstreamError

if TYPE_CHECKING:
    from promptcontext.config import DocsSettings

log = structlog.get_logger()

_LIBRARY_ID_RE = re.compile(r"Context7-compatible library ID:\s*(\S+)")
_RETRYABLE_STATUS = frozenset({408, 425, 429})


def build_http_client(settings: DocsSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    headers = {
        "User-Agent": f"promptcontext/{__version__}",
        "Accept": "application/json, text/event-stream",
    }
    if settings.api_key:
        headers["Authorization"] = f"Bearer {settings.api_key}"
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.attempt_timeout_seconds),
        headers=headers,
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def parse_rpc_body(body: str, content_type: str) -> dict[str, Any]:
    """Decode a JSON-RPC response delivered as JSON or as an SSE stream.

    For SSE, the last ``data:`` event carrying a JSON object wins.
    """
    if "text/event-stream" in content_type:
        payload: dict[str, Any] | None = None
        for line in body.splitlines():
            if not line.startswith("data:"):
                continue
            data = line[5:].strip()
            if not data:
                continue
            try:
                decoded = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(decoded, dict):
                payload = decoded
        if payload is None:
            raise PermanentUpstreamError("Event stream carried no JSON-RPC message")
        return payload

    try:
        decoded = json.loads(body)
    except json.JSONDecodeError as exc:
        raise PermanentUpstreamError(f"Malformed JSON-RPC response: {exc}") from exc
    if not isinstance(decoded, dict):
        raise PermanentUpstreamError("JSON-RPC response is not an object")
    return decoded


def _result_text(payload: dict[str, Any]) -> str:
    if "error" in payload:
        error = payload["error"] or {}
        raise PermanentUpstreamError(
            f"JSON-RPC error {error.get('code')}: {error.get('message', 'unknown')}"
        )
    result = payload.get("result") or {}
    if result.get("isError"):
        raise PermanentUpstreamError("Documentation tool reported an error")
    parts = [
        block.get("text", "")
        for block in result.get("content", [])
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n".join(parts)


class Context7Transport:
    """Documentation transport implementing DocsTransport."""

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self._url = url
        self._ids = itertools.count(1)

    async def fetch_docs(self, library: str, *, topic: str = "", tokens: int = 2000) -> str:
        """Return documentation text for ``library``.

        ``library`` may be a framework name ("react") or an already resolved
        Context7 ID ("/facebook/react").
        """
        library_id = library if library.startswith("/") else await self.resolve_library_id(library)
        arguments: dict[str, Any] = {"context7CompatibleLibraryID": library_id, "tokens": tokens}
        if topic:
            arguments["topic"] = topic
        text = await self._call_tool("get-library-docs", arguments)
        log.info("docs_fetch_complete", library=library, library_id=library_id, length=len(text))
        return text

    async def resolve_library_id(self, library: str) -> str:
        text = await self._call_tool("resolve-library-id", {"libraryName": library})
        match = _LIBRARY_ID_RE.search(text)
        if match is None:
            raise PermanentUpstreamError(f"No documentation library found for '{library}'")
        return match.group(1)

    async def _call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }
        try:
            response = await self._client.post(self._url, json=request)
        except httpx.TimeoutException as exc:
            raise TransientUpstreamError(f"Timed out calling {name}") from exc
        except httpx.HTTPError as exc:
            raise TransientUpstreamError(f"Network error calling {name}: {exc}") from exc

        status = response.status_code
        if status >= 500 or status in _RETRYABLE_STATUS:
            raise TransientUpstreamError(f"HTTP {status} calling {name}")
        if not response.is_success:
            raise PermanentUpstreamError(f"HTTP {status} calling {name}")

        payload = parse_rpc_body(response.text, response.headers.get("content-type", ""))
        return _result_text(payload)
