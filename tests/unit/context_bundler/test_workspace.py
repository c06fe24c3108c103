from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from context_bundler.config import ExportFormat, FileRecord, NoticeKind
from context_bundler.content import ContentResolver, FetchedContent, error_placeholder
from context_bundler.exceptions import ContentFetchError, NoMatchingFilesError, PresetNotFoundError
from context_bundler.sources import GitHubSource, LocalSource
from context_bundler.workspace import Workspace

if TYPE_CHECKING:
    from collections.abc import Callable

    from context_bundler.github_source import RemoteTreeListing

REPO = GitHubSource(owner="octo", repo="demo", branch="main")


def _local(*paths: str) -> list[FileRecord]:
    return [FileRecord(path=p, content=f"// {p}\n", line_count=2) for p in paths]


def _remote(*paths: str) -> list[FileRecord]:
    return [FileRecord(path=p, byte_size=40, content_hash=f"sha-{p}") for p in paths]


class FakeFetcher:
    def __init__(
        self,
        files: dict[str, str],
        failures: dict[str, Exception] | None = None,
        on_fetch: Callable[[], None] | None = None,
    ) -> None:
        self.files = files
        self.failures = failures or {}
        self.on_fetch = on_fetch
        self.calls: list[str] = []

    async def fetch(self, source: GitHubSource, path: str, content_hash: str | None = None) -> FetchedContent:
        self.calls.append(path)
        await asyncio.sleep(0)
        if self.on_fetch is not None:
            self.on_fetch()
        if path in self.failures:
            raise self.failures[path]
        text = self.files[path]
        return FetchedContent(content=text, byte_size=len(text))


class WordTokenizer:
    def count(self, text: str) -> int:
        return len(text.split())


@pytest.mark.unit
def test_reload_of_same_source_keeps_selection_and_expansion() -> None:
    ws = Workspace()
    ws.load(LocalSource(folder_name="proj"), _local("README.md", "src/a.py", "src/b.py"))
    ws.toggle("src/a.py", True)
    ws.toggle("README.md", True)
    ws.expand("src")

    ws.load(LocalSource(folder_name="proj"), _local("src/a.py", "src/b.py", "src/c.py"))

    assert ws.selection.paths == {"src/a.py"}
    assert ws.expanded == {"src"}
    assert ws.selection.tree is ws.tree


@pytest.mark.unit
def test_same_named_folders_are_different_sources(tmp_path: Path) -> None:
    for parent in ("one", "two"):
        folder = tmp_path / parent / "src"
        (folder / "pkg").mkdir(parents=True)
        (folder / "a.py").write_text("a = 1\n", encoding="utf-8")
        (folder / "pkg" / "b.py").write_text("b = 2\n", encoding="utf-8")
    ws = Workspace()
    ws.open_folder(tmp_path / "one" / "src")
    ws.toggle("a.py", True)
    ws.expand_all()

    ws.open_folder(tmp_path / "two" / "src")

    assert ws.selection.paths == frozenset()
    assert ws.expanded == frozenset()

    ws.toggle("a.py", True)
    ws.open_folder(tmp_path / "two" / "src")
    assert ws.selection.paths == {"a.py"}


@pytest.mark.unit
def test_switching_branch_clears_selection_and_expansion() -> None:
    ws = Workspace()
    ws.load(REPO, _remote("src/a.py", "src/b.py"))
    ws.select_all()
    ws.expand_all()
    assert ws.expanded == {"src"}

    ws.load(REPO.model_copy(update={"branch": "dev"}), _remote("src/a.py", "src/b.py"))

    assert len(ws.selection) == 0
    assert ws.expanded == frozenset()


@pytest.mark.unit
def test_same_branch_with_new_commit_is_the_same_source() -> None:
    ws = Workspace()
    ws.load(REPO, _remote("a.py"))
    ws.select_all()

    ws.load(GitHubSource(owner="Octo", repo="Demo", branch="main"), _remote("a.py", "b.py"))

    assert ws.selection.paths == {"a.py"}


@pytest.mark.unit
def test_load_notices() -> None:
    ws = Workspace()

    assert [n.kind for n in ws.load(LocalSource(folder_name="empty"), [])] == [NoticeKind.NO_MATCHING_FILES]
    notices = ws.load(REPO, _remote("a.py"), truncated=True)
    assert [n.kind for n in notices] == [NoticeKind.TREE_TRUNCATED]
    assert ws.state.truncated is True


@pytest.mark.unit
def test_open_github_with_no_files_leaves_state_untouched() -> None:
    class EmptyAdapter:
        async def load(self, owner: str, repo: str, branch: str, **kwargs: object) -> RemoteTreeListing:
            raise NoMatchingFilesError(source=f"{owner}/{repo}@{branch}")

    ws = Workspace()
    ws.load(LocalSource(folder_name="proj"), _local("a.py"))
    previous = ws.state

    notices = asyncio.run(ws.open_github(EmptyAdapter(), "octo", "demo", "main"))  # type: ignore[arg-type]

    assert [n.kind for n in notices] == [NoticeKind.NO_MATCHING_FILES]
    assert ws.state is previous


@pytest.mark.unit
def test_export_without_selection_returns_notice() -> None:
    ws = Workspace()
    outcome = asyncio.run(ws.export(ExportFormat.CODE))
    assert not outcome.ok
    assert outcome.notice is not None
    assert outcome.notice.kind is NoticeKind.NO_FILES_SELECTED

    ws.load(LocalSource(folder_name="proj"), _local("a.py"))
    outcome = asyncio.run(ws.export(ExportFormat.PATHS))
    assert outcome.notice is not None
    assert outcome.notice.kind is NoticeKind.NO_FILES_SELECTED


@pytest.mark.unit
def test_code_dump_keeps_failed_remote_files_inline() -> None:
    fetcher = FakeFetcher(
        {"src/good.py": "print('ok')\n"},
        failures={"src/bad.py": ContentFetchError(path="src/bad.py", reason="GitHub API error: 500")},
    )
    ws = Workspace(resolver=ContentResolver(fetcher))
    ws.load(REPO, _remote("src/bad.py", "src/good.py"))
    ws.select_all()

    outcome = asyncio.run(ws.export(ExportFormat.CODE))

    assert outcome.ok
    assert outcome.text is not None
    assert f"// src/bad.py\n{error_placeholder('src/bad.py', 'GitHub API error: 500')}\n" in outcome.text
    assert "// src/good.py\nprint('ok')\n" in outcome.text
    assert outcome.text.index("// src/bad.py") < outcome.text.index("// src/good.py")
    assert outcome.stale is False


@pytest.mark.unit
def test_export_is_flagged_when_tree_changes_midway() -> None:
    ws: Workspace

    def refresh() -> None:
        if ws.state.source is REPO:
            ws.load(REPO.model_copy(update={"commit_date": None}), _remote("a.py"))

    ws = Workspace(resolver=ContentResolver(FakeFetcher({"a.py": "x = 1\n"}, on_fetch=refresh)))
    ws.load(REPO, _remote("a.py"))
    ws.select_all()
    revision = ws.tree.revision

    outcome = asyncio.run(ws.export(ExportFormat.CODE))

    assert outcome.ok
    assert outcome.revision == revision
    assert outcome.stale is True
    assert ws.tree.revision != revision


@pytest.mark.unit
def test_search_expands_ancestors_of_matches() -> None:
    ws = Workspace()
    ws.load(LocalSource(folder_name="proj"), _local("a/b/c.ts", "d.md"))

    result = ws.search("c.ts")

    assert result.matches == {"a", "a/b", "a/b/c.ts"}
    assert {"a", "a/b"} <= ws.expanded
    assert ws.visible_files() == ["a/b/c.ts"]

    ws.search("")
    assert {"a", "a/b"} <= ws.expanded
    assert ws.visible_files() == ["a/b/c.ts", "d.md"]


@pytest.mark.unit
def test_visible_files_follow_expansion() -> None:
    ws = Workspace()
    ws.load(LocalSource(folder_name="proj"), _local("src/a.py", "src/lib/b.py", "top.md"))

    assert ws.visible_files() == ["top.md"]
    ws.expand("top.md")
    assert ws.expanded == frozenset()

    ws.toggle_expand("src")
    assert ws.visible_files() == ["src/a.py", "top.md"]
    ws.select_visible()
    assert ws.selection.paths == {"src/a.py", "top.md"}

    ws.expand_all()
    ws.deselect_visible()
    assert len(ws.selection) == 0
    ws.collapse_all()
    assert ws.expanded == frozenset()


@pytest.mark.unit
def test_suggestions_replace_selection_only_when_valid() -> None:
    ws = Workspace()
    ws.load(LocalSource(folder_name="proj"), _local("src/a.py", "src/b.py"))
    ws.toggle("src/a.py", True)

    empty = ws.apply_suggestions([])
    invalid = ws.apply_suggestion_response('["ghost.py"]')

    assert empty is not None
    assert empty.kind is NoticeKind.ADVISORY_EMPTY
    assert invalid is not None
    assert invalid.kind is NoticeKind.ADVISORY_INVALID
    assert ws.selection.paths == {"src/a.py"}

    assert ws.apply_suggestion_response('```json\n["src/b.py", "ghost.py"]\n```') is None
    assert ws.selection.paths == {"src/b.py"}


@pytest.mark.unit
def test_suggest_sends_the_full_tree_to_the_advisor() -> None:
    class Advisor:
        def __init__(self) -> None:
            self.seen = ""

        async def suggest(self, project_tree: str) -> list[str]:
            self.seen = project_tree
            return ["src/b.py"]

    advisor = Advisor()
    ws = Workspace()
    ws.load(LocalSource(folder_name="proj"), _local("src/a.py", "src/b.py"))

    assert asyncio.run(ws.suggest(advisor)) is None
    assert "a.py" in advisor.seen
    assert "b.py" in advisor.seen
    assert ws.selection.paths == {"src/b.py"}


@pytest.mark.unit
def test_presets_round_trip_through_the_workspace() -> None:
    ws = Workspace()
    ws.load(LocalSource(folder_name="proj"), _local("a.py", "b.py", "c.py"))
    ws.select_paths(["a.py", "c.py"])
    ws.save_preset("core")
    ws.deselect_all()

    ws.apply_preset("core")

    assert ws.selection.paths == {"a.py", "c.py"}
    with pytest.raises(PresetNotFoundError):
        ws.apply_preset("missing")


@pytest.mark.unit
def test_fetch_selected_makes_estimates_exact() -> None:
    fetcher = FakeFetcher({"a.py": "one two three", "b.py": "four five"})
    ws = Workspace(resolver=ContentResolver(fetcher), tokenizer=WordTokenizer())
    ws.load(REPO, _remote("a.py", "b.py"))
    ws.select_all()

    before = ws.estimate()
    fetched = asyncio.run(ws.fetch_selected())
    after = ws.estimate()

    assert before.estimated_files == 2
    assert before.total == 20
    assert fetched == 2
    assert after.exact_files == 2
    assert after.total == 5


@pytest.mark.unit
def test_burst_of_toggles_runs_one_estimate() -> None:
    ws = Workspace(debounce=0.01)
    ws.load(LocalSource(folder_name="proj"), [FileRecord(path=p, content="x" * 40) for p in ("a.py", "b.py", "c.py")])

    async def scenario() -> int:
        ws.toggle("a.py", True)
        ws.toggle("b.py", True)
        ws.toggle("c.py", True)
        ws.toggle("c.py", False)
        estimate = await ws.settled_estimate()
        return estimate.total

    assert asyncio.run(scenario()) == 20
    assert ws.estimator.runs == 1


@pytest.mark.unit
def test_remote_code_dump_without_fetcher_is_not_shown_as_empty() -> None:
    ws = Workspace()
    ws.load(REPO, [FileRecord(path="a.py", byte_size=400, content_hash="sha-a")])
    ws.select_all()

    outcome = asyncio.run(ws.export(ExportFormat.CODE))

    assert outcome.text is not None
    assert f"// a.py\n{error_placeholder('a.py', 'no content fetcher configured')}\n" in outcome.text
    assert "[Empty file]" not in outcome.text
