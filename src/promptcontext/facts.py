"""Project fact and snippet collection.

FactCollector treats its sources as black boxes: it runs them concurrently,
bounds each by a timeout and converts their output into ContextItems. A
failing source only removes its own contribution.

ManifestFactSource is the default ProjectFactSource: the project identifier
is a directory path, and facts are the dependencies declared in its
pyproject.toml, requirements.txt and package.json. ProjectSnippetSource is the
default SnippetSource: it scans the usual source directories of the same
project for function and class definitions that mention the request's terms.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from promptcontext.models.context import CodeSnippet, ContextItem, ProjectFact, SourceKind
from promptcontext.ranker import terms
from promptcontext.tokens import estimate_tokens

if TYPE_CHECKING:
    from promptcontext.protocols import ProjectFactSource, SnippetSource

log = structlog.get_logger()

MANIFEST_FILES: tuple[str, ...] = ("pyproject.toml", "requirements.txt", "package.json")

_REQUIREMENT_NAME_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")

# Package names whose common framework identifier differs from the package name.
_PACKAGE_TAGS: dict[str, str] = {
    "next": "nextjs",
    "@angular/core": "angular",
    "@sveltejs/kit": "svelte",
    "vue-router": "vue",
}


@dataclass
class FactCollection:
    items: list[ContextItem] = field(default_factory=list)
    degraded: bool = False
    unavailable: list[str] = field(default_factory=list)


class FactCollector:
    """Gathers project facts and matched code snippets for one request."""

    def __init__(
        self,
        fact_source: ProjectFactSource,
        snippet_source: SnippetSource | None = None,
        *,
        timeout_seconds: float = 2.0,
    ) -> None:
        self._fact_source = fact_source
        self._snippet_source = snippet_source
        self._timeout = timeout_seconds

    async def fingerprint(self, project_id: str | None) -> str:
        """Project fingerprint for cache keying; ``""`` when unknown or unreadable."""
        if not project_id:
            return ""
        try:
            async with asyncio.timeout(self._timeout):
                return await self._fact_source.fingerprint(project_id)
        except Exception:
            log.warning("project_fingerprint_failed", project_id=project_id, exc_info=True)
            return ""

    async def collect(self, project_id: str | None, request_text: str) -> FactCollection:
        if not project_id:
            return FactCollection()

        sources: dict[str, Any] = {"project_facts": self._fact_source.facts(project_id)}
        if self._snippet_source is not None:
            sources["code_snippets"] = self._snippet_source.snippets(project_id, request_text)

        results = await asyncio.gather(
            *(self._bounded(coro) for coro in sources.values()), return_exceptions=True
        )

        collection = FactCollection()
        for source, result in zip(sources, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self._record_failure(source, project_id, result, collection)
                continue
            if source == "project_facts":
                collection.items.extend(_fact_item(fact) for fact in result)
            else:
                collection.items.extend(_snippet_item(snippet) for snippet in result)
        return collection

    async def _bounded(self, coro: Any) -> Any:
        async with asyncio.timeout(self._timeout):
            return await coro

    def _record_failure(
        self, source: str, project_id: str, error: Exception, collection: FactCollection
    ) -> None:
        if isinstance(error, TimeoutError):
            log.warning("fact_source_timeout", source=source, project_id=project_id)
        else:
            log.warning(
                "fact_source_failed",
                source=source,
                project_id=project_id,
                exc_info=error,
            )
        collection.degraded = True
        collection.unavailable.append(source)


def _fact_item(fact: ProjectFact) -> ContextItem:
    return ContextItem(
        kind=SourceKind.FACT,
        content=fact.text,
        tokens=estimate_tokens(fact.text),
        tag=fact.tag.lower() if fact.tag else None,
        source="project",
    )


def _snippet_item(snippet: CodeSnippet) -> ContextItem:
    return ContextItem(
        kind=SourceKind.SNIPPET,
        content=snippet.content,
        tokens=estimate_tokens(snippet.content),
        tag=snippet.tag.lower() if snippet.tag else None,
        source=snippet.path,
    )


class ManifestFactSource:
    """Reads dependency manifests from a project directory."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = root

    def _project_dir(self, project_id: str) -> Path:
        return _resolve_project_dir(project_id, self._root)

    async def facts(self, project_id: str) -> list[ProjectFact]:
        return await asyncio.to_thread(self._read_facts, self._project_dir(project_id))

    async def fingerprint(self, project_id: str) -> str:
        return await asyncio.to_thread(self._fingerprint, self._project_dir(project_id))

    def _fingerprint(self, project_dir: Path) -> str:
        digest = hashlib.sha256()
        found = False
        for name in MANIFEST_FILES:
            path = project_dir / name
            if path.is_file():
                found = True
                digest.update(name.encode("utf-8"))
                digest.update(path.read_bytes())
        return digest.hexdigest()[:16] if found else ""

    def _read_facts(self, project_dir: Path) -> list[ProjectFact]:
        if not project_dir.is_dir():
            log.debug("project_dir_missing", path=str(project_dir))
            return []

        facts: list[ProjectFact] = []
        dependencies: list[str] = []

        pyproject = project_dir / "pyproject.toml"
        requirements = project_dir / "requirements.txt"
        package_json = project_dir / "package.json"

        if pyproject.is_file() or requirements.is_file():
            facts.append(ProjectFact(text="Project is a Python project", tag="python"))
        if pyproject.is_file():
            dependencies.extend(_pyproject_dependencies(pyproject))
        if requirements.is_file():
            dependencies.extend(_requirements_dependencies(requirements))
        if package_json.is_file():
            js_deps = _package_json_dependencies(package_json)
            language = "TypeScript" if "typescript" in js_deps else "JavaScript"
            facts.append(ProjectFact(text=f"Project is a {language} project", tag=language.lower()))
            dependencies.extend(js_deps)

        for name in dict.fromkeys(dependencies):
            tag = _PACKAGE_TAGS.get(name, name.rsplit("/", 1)[-1])
            facts.append(ProjectFact(text=f"Project uses {name}", tag=tag))
        return facts


def _pyproject_dependencies(path: Path) -> list[str]:
    data = tomllib.loads(path.read_text(encoding="utf-8"))
    names: list[str] = []
    for requirement in data.get("project", {}).get("dependencies", []):
        match = _REQUIREMENT_NAME_RE.match(requirement)
        if match:
            names.append(match.group(1).lower())
    poetry = data.get("tool", {}).get("poetry", {}).get("dependencies", {})
    names.extend(name.lower() for name in poetry if name.lower() != "python")
    return names


def _requirements_dependencies(path: Path) -> list[str]:
    names: list[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", "-")):
            continue
        match = _REQUIREMENT_NAME_RE.match(stripped)
        if match:
            names.append(match.group(1).lower())
    return names


def _package_json_dependencies(path: Path) -> list[str]:
    data = json.loads(path.read_text(encoding="utf-8"))
    names: list[str] = []
    for section in ("dependencies", "devDependencies"):
        names.extend(name.lower() for name in data.get(section, {}) or {})
    return names


def _resolve_project_dir(project_id: str, root: Path | None) -> Path:
    path = Path(project_id).expanduser()
    if root is not None and not path.is_absolute():
        path = root / path
    return path


# ---------------------------------------------------------------------------
# Code snippets
# ---------------------------------------------------------------------------

SOURCE_DIRS: tuple[str, ...] = ("src", "lib", "app", "components", "pages", "utils")

_LANGUAGES: dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".vue": "vue",
    ".svelte": "svelte",
}

_SKIP_DIRS = frozenset({"node_modules", ".git", "__pycache__", ".venv", "venv", "dist", "build"})

_DEFINITION_RE = re.compile(
    r"^(?P<indent>[ \t]*)(?:export\s+)?(?:default\s+)?(?:async\s+)?"
    r"(?:def|class|function|const|let|var)\s+\w+"
)
_CLOSING_RE = re.compile(r"^[\s\})\];,]*$")


@dataclass(frozen=True)
class _Block:
    path: str
    line: int
    text: str
    relevance: float
    language: str


class ProjectSnippetSource:
    """Finds function and class definitions relevant to a request.

    Only files under ``SOURCE_DIRS`` of the project directory are read. A
    definition is kept when at least ``min_relevance`` of the request's terms
    appear in it; the ``max_snippets`` most relevant are returned.
    """

    def __init__(
        self,
        root: Path | None = None,
        *,
        max_snippets: int = 10,
        max_files: int = 500,
        max_file_bytes: int = 200_000,
        max_block_lines: int = 40,
        max_snippet_chars: int = 1200,
        min_relevance: float = 0.3,
    ) -> None:
        self._root = root
        self._max_snippets = max_snippets
        self._max_files = max_files
        self._max_file_bytes = max_file_bytes
        self._max_block_lines = max_block_lines
        self._max_snippet_chars = max_snippet_chars
        self._min_relevance = min_relevance

    async def snippets(self, project_id: str, request_text: str) -> list[CodeSnippet]:
        wanted = terms(request_text)
        if not wanted:
            return []
        project_dir = _resolve_project_dir(project_id, self._root)
        return await asyncio.to_thread(self._find, project_dir, wanted)

    def _find(self, project_dir: Path, wanted: set[str]) -> list[CodeSnippet]:
        blocks: list[_Block] = []
        for path in self._code_files(project_dir):
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                log.debug("snippet_file_unreadable", path=str(path))
                continue
            relative = path.relative_to(project_dir).as_posix()
            blocks.extend(self._blocks(relative, content, wanted, _LANGUAGES[path.suffix]))

        blocks.sort(key=lambda b: (-b.relevance, b.path, b.line))
        selected = blocks[: self._max_snippets]
        log.debug("snippets_found", project=str(project_dir), candidates=len(blocks))
        return [
            CodeSnippet(
                content=block.text[: self._max_snippet_chars],
                path=f"{block.path}:{block.line}",
                tag=block.language,
            )
            for block in selected
        ]

    def _code_files(self, project_dir: Path) -> list[Path]:
        files: list[Path] = []
        for name in SOURCE_DIRS:
            base = project_dir / name
            if not base.is_dir():
                continue
            for path in sorted(base.rglob("*")):
                if len(files) >= self._max_files:
                    return files
                if _SKIP_DIRS.intersection(path.relative_to(project_dir).parts):
                    continue
                if path.suffix not in _LANGUAGES or not path.is_file():
                    continue
                if path.stat().st_size > self._max_file_bytes:
                    continue
                files.append(path)
        return files

    def _blocks(self, path: str, content: str, wanted: set[str], language: str) -> list[_Block]:
        lines = content.splitlines()
        found: list[_Block] = []
        i = 0
        while i < len(lines):
            match = _DEFINITION_RE.match(lines[i])
            if match is None:
                i += 1
                continue
            end = _block_end(lines, i, len(match.group("indent")), self._max_block_lines)
            text = "\n".join(lines[i:end]).rstrip()
            lowered = text.lower()
            relevance = sum(1 for term in wanted if term in lowered) / len(wanted)
            if relevance >= self._min_relevance:
                found.append(_Block(path, i + 1, text, relevance, language))
            # Nested definitions belong to the enclosing block.
            i = end
        return found


def _block_end(lines: list[str], start: int, indent: int, max_lines: int) -> int:
    limit = min(len(lines), start + max_lines)
    for j in range(start + 1, limit):
        line = lines[j]
        if not line.strip():
            continue
        current = len(line) - len(line.lstrip())
        if current > indent:
            continue
        # A closing bracket at the definition's indent still belongs to it.
        if _CLOSING_RE.match(line):
            return j + 1
        return j
    return limit
