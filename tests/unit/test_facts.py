"""Unit tests for promptcontext.facts."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from promptcontext.facts import FactCollector, ManifestFactSource, ProjectSnippetSource
from promptcontext.models.context import SourceKind

if TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import StaticFactSource, StaticSnippetSource


# ---------------------------------------------------------------------------
# FactCollector
# ---------------------------------------------------------------------------


class TestCollect:
    async def test_facts_become_fact_items(self, fact_source: StaticFactSource) -> None:
        collection = await FactCollector(fact_source).collect("proj", "create a login form")

        assert collection.degraded is False
        assert len(collection.items) == 1
        item = collection.items[0]
        assert item.kind == SourceKind.FACT
        assert item.content == "uses framework X"
        assert item.tag == "x"
        assert item.tokens == 4

    async def test_snippets_included(
        self, fact_source: StaticFactSource, snippet_source: StaticSnippetSource
    ) -> None:
        collector = FactCollector(fact_source, snippet_source)
        collection = await collector.collect("proj", "login form")
        kinds = [item.kind for item in collection.items]
        assert kinds == [SourceKind.FACT, SourceKind.SNIPPET]
        assert collection.items[1].source == "src/login.tsx"

    async def test_no_project_skips_sources(self, fact_source: StaticFactSource) -> None:
        collection = await FactCollector(fact_source).collect(None, "anything")
        assert collection.items == []
        assert fact_source.calls == 0

    async def test_unknown_project_has_no_facts(self, fact_source: StaticFactSource) -> None:
        collection = await FactCollector(fact_source).collect("other", "anything")
        assert collection.items == []
        assert collection.degraded is False

    async def test_slow_source_times_out(
        self, fact_source: StaticFactSource, snippet_source: StaticSnippetSource
    ) -> None:
        fact_source.delay = 0.5
        collector = FactCollector(fact_source, snippet_source, timeout_seconds=0.05)
        collection = await collector.collect("proj", "login form")

        assert collection.degraded is True
        assert collection.unavailable == ["project_facts"]
        assert [item.kind for item in collection.items] == [SourceKind.SNIPPET]

    async def test_failing_source_degrades(self, fact_source: StaticFactSource) -> None:
        fact_source.error = OSError("permission denied")
        collection = await FactCollector(fact_source).collect("proj", "anything")
        assert collection.degraded is True
        assert collection.unavailable == ["project_facts"]
        assert collection.items == []


class TestFingerprint:
    async def test_no_project_is_empty(self, fact_source: StaticFactSource) -> None:
        assert await FactCollector(fact_source).fingerprint(None) == ""

    async def test_delegates_to_source(self, fact_source: StaticFactSource) -> None:
        assert await FactCollector(fact_source).fingerprint("proj") == "fp-1"

    async def test_failure_is_empty(self) -> None:
        class BrokenSource:
            async def facts(self, project_id: str) -> list:
                return []

            async def fingerprint(self, project_id: str) -> str:
                raise OSError("unreadable")

        assert await FactCollector(BrokenSource()).fingerprint("proj") == ""


# ---------------------------------------------------------------------------
# ManifestFactSource
# ---------------------------------------------------------------------------


class TestManifestFactSource:
    async def test_pyproject_and_requirements(self, tmp_path: Path) -> None:
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "app"\ndependencies = ["FastAPI>=0.110", "pydantic[email]"]\n'
        )
        (tmp_path / "requirements.txt").write_text("# pinned\nsqlalchemy==2.0\n-r base.txt\n")

        facts = await ManifestFactSource().facts(str(tmp_path))

        texts = [fact.text for fact in facts]
        assert texts == [
            "Project is a Python project",
            "Project uses fastapi",
            "Project uses pydantic",
            "Project uses sqlalchemy",
        ]
        assert facts[1].tag == "fastapi"

    async def test_package_json(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text(
            json.dumps(
                {
                    "dependencies": {"next": "14.0.0", "@angular/core": "17"},
                    "devDependencies": {"typescript": "5"},
                }
            )
        )

        facts = await ManifestFactSource().facts(str(tmp_path))

        assert facts[0].text == "Project is a TypeScript project"
        tags = {fact.text: fact.tag for fact in facts}
        assert tags["Project uses next"] == "nextjs"
        assert tags["Project uses @angular/core"] == "angular"

    async def test_relative_to_root(self, tmp_path: Path) -> None:
        (tmp_path / "app").mkdir()
        (tmp_path / "app" / "requirements.txt").write_text("django\n")
        facts = await ManifestFactSource(root=tmp_path).facts("app")
        assert [fact.tag for fact in facts] == ["python", "django"]

    async def test_missing_directory(self, tmp_path: Path) -> None:
        assert await ManifestFactSource().facts(str(tmp_path / "nope")) == []

    async def test_fingerprint_tracks_manifest_changes(self, tmp_path: Path) -> None:
        source = ManifestFactSource()
        assert await source.fingerprint(str(tmp_path)) == ""

        manifest = tmp_path / "requirements.txt"
        manifest.write_text("flask\n")
        first = await source.fingerprint(str(tmp_path))
        assert len(first) == 16
        assert await source.fingerprint(str(tmp_path)) == first

        manifest.write_text("flask\ndjango\n")
        assert await source.fingerprint(str(tmp_path)) != first


# ---------------------------------------------------------------------------
# ProjectSnippetSource
# ---------------------------------------------------------------------------

LOGIN_PY = '''import os


def render_login_form(user):
    return "<form>login</form>"


def unrelated_helper():
    return 42
'''

LOGIN_TSX = """export function LoginForm() {
  return <form />;
}
"""


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


class TestProjectSnippetSource:
    async def test_matching_definitions_found(self, tmp_path: Path) -> None:
        _write(tmp_path / "src" / "auth" / "login.py", LOGIN_PY)
        _write(tmp_path / "components" / "LoginForm.tsx", LOGIN_TSX)
        _write(tmp_path / "src" / "node_modules" / "pkg" / "login.js", "function loginForm() {}\n")
        _write(tmp_path / "docs" / "login_form.py", "def login_form():\n    pass\n")

        snippets = await ProjectSnippetSource().snippets(str(tmp_path), "create a login form")

        assert [s.path for s in snippets] == ["components/LoginForm.tsx:1", "src/auth/login.py:4"]
        assert snippets[0].content == LOGIN_TSX.rstrip("\n")
        assert snippets[0].tag == "typescript"
        assert snippets[1].content.startswith("def render_login_form(user):")
        assert "unrelated_helper" not in snippets[1].content

    async def test_most_relevant_kept(self, tmp_path: Path) -> None:
        _write(
            tmp_path / "lib" / "forms.py",
            "def form():\n    pass\n\n\ndef login_form():\n    pass\n",
        )
        snippets = await ProjectSnippetSource(max_snippets=1).snippets(
            str(tmp_path), "login form"
        )
        assert [s.path for s in snippets] == ["lib/forms.py:5"]

    async def test_nested_definitions_stay_in_enclosing_block(self, tmp_path: Path) -> None:
        _write(
            tmp_path / "app" / "views.py",
            "class LoginView:\n    def form(self):\n        return 'login'\n",
        )
        snippets = await ProjectSnippetSource().snippets(str(tmp_path), "login form")
        assert len(snippets) == 1
        assert snippets[0].path == "app/views.py:1"

    async def test_content_truncated(self, tmp_path: Path) -> None:
        _write(tmp_path / "src" / "login.py", LOGIN_PY)
        snippets = await ProjectSnippetSource(max_snippet_chars=20).snippets(
            str(tmp_path), "login form"
        )
        assert len(snippets[0].content) == 20

    async def test_request_without_terms(self, tmp_path: Path) -> None:
        _write(tmp_path / "src" / "login.py", LOGIN_PY)
        assert await ProjectSnippetSource().snippets(str(tmp_path), "make it") == []

    async def test_missing_directory(self, tmp_path: Path) -> None:
        assert await ProjectSnippetSource().snippets(str(tmp_path / "nope"), "login form") == []

    async def test_feeds_collector_as_snippet_items(
        self, tmp_path: Path, fact_source: StaticFactSource
    ) -> None:
        _write(tmp_path / "src" / "login.py", LOGIN_PY)
        collector = FactCollector(fact_source, ProjectSnippetSource())

        collection = await collector.collect(str(tmp_path), "login form")

        assert [item.kind for item in collection.items] == [SourceKind.SNIPPET]
        assert collection.items[0].source == "src/login.py:4"
