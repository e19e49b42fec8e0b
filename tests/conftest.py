"""Shared test fixtures for the promptcontext test suite."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from promptcontext.cache import CacheStore
from promptcontext.models.context import CodeSnippet, ProjectFact

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

SEPARATOR = "\n" + "-" * 40 + "\n"

X_DOCS = SEPARATOR.join(
    [
        "TITLE: Routing basics\nDefine routes with x.route().",
        "TITLE: Login form\nBuild a login form with x.Form and x.Input fields.",
        "TITLE: Form validation\nValidate form input with x.validate().",
        "TITLE: Login redirect\nRedirect after login with x.redirect().",
        "TITLE: Theming\nCustomize the theme with x.theme().",
    ]
)


class FakeTransport:
    """Scripted DocsTransport recording every call."""

    def __init__(
        self,
        docs: dict[str, str] | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.docs = docs or {}
        self.error = error
        self.delay = delay
        self.calls: list[str] = []
        self.library_errors: dict[str, Exception] = {}

    async def fetch_docs(self, library: str, *, topic: str = "", tokens: int = 2000) -> str:
        self.calls.append(library)
        if self.delay:
            await asyncio.sleep(self.delay)
        if library in self.library_errors:
            raise self.library_errors[library]
        if self.error is not None:
            raise self.error
        return self.docs.get(library, "")


class StaticFactSource:
    """In-memory ProjectFactSource."""

    def __init__(
        self,
        facts: dict[str, list[ProjectFact]] | None = None,
        *,
        fingerprint: str = "fp-1",
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.facts_by_project = facts or {}
        self.current_fingerprint = fingerprint
        self.delay = delay
        self.error = error
        self.calls = 0

    async def facts(self, project_id: str) -> list[ProjectFact]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.facts_by_project.get(project_id, [])

    async def fingerprint(self, project_id: str) -> str:
        return self.current_fingerprint


class StaticSnippetSource:
    def __init__(self, snippets: list[CodeSnippet]) -> None:
        self._snippets = snippets

    async def snippets(self, project_id: str, request_text: str) -> list[CodeSnippet]:
        return list(self._snippets)


class StaticDetector:
    """FrameworkDetector returning a fixed set plus any hints."""

    def __init__(self, frameworks: set[str] | None = None) -> None:
        self._frameworks = frozenset(frameworks or ())

    def detect(self, text: str, hints: list[str]) -> frozenset[str]:
        return self._frameworks | {h.lower() for h in hints}


@pytest.fixture()
async def store() -> AsyncIterator[CacheStore]:
    """CacheStore over a fresh in-memory database."""
    async with aiosqlite.connect(":memory:") as db:
        cache_store = CacheStore(db)
        await cache_store.init_db()
        yield cache_store


@pytest.fixture()
def fake_transport() -> FakeTransport:
    return FakeTransport({"x": X_DOCS})


@pytest.fixture()
def fact_source() -> StaticFactSource:
    return StaticFactSource({"proj": [ProjectFact(text="uses framework X", tag="x")]})


@pytest.fixture()
def detector() -> StaticDetector:
    return StaticDetector({"x"})


@pytest.fixture()
def snippet_source() -> StaticSnippetSource:
    snippet = CodeSnippet(
        content="export function LoginForm() { return <form /> }", path="src/login.tsx"
    )
    return StaticSnippetSource([snippet])


@pytest.fixture()
def x_docs() -> str:
    """Documentation text for framework "x" in separator-delimited snippet format."""
    return X_DOCS
