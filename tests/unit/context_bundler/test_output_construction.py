from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from context_bundler.config import ExportFormat, FileRecord, SourceKind, format_file_size
from context_bundler.content import BINARY_PLACEHOLDER, EMPTY_PLACEHOLDER, ContentResolver, FetchedContent
from context_bundler.exceptions import ContentNotFoundError, NoFilesSelectedError
from context_bundler.output_construction import (
    BundleExporter,
    build_code_dump,
    build_markdown_summary,
    build_path_list,
    build_tree_lines,
    format_choices,
    minify_code,
    render_tree_text,
)
from context_bundler.selection import Selection
from context_bundler.sources import GitHubSource, LocalSource
from context_bundler.tokens import TokenEstimate, estimate_tokens
from context_bundler.tree import build_tree

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=UTC)
LOCAL = LocalSource(folder_name="demo", uploaded_at=NOW - timedelta(minutes=3))


def _local_selection() -> Selection:
    tree = build_tree(
        [
            FileRecord(path="src/a.ts", content="x" * 40, line_count=10, byte_size=40),
            FileRecord(path="src/b.png", byte_size=2000),
            FileRecord(path="src/util/helpers.ts", content="export const h = 1;\n", line_count=2),
            FileRecord(path="README.md", content="# Demo\n", line_count=2),
            FileRecord(path="empty.txt", content="", line_count=1, byte_size=0),
        ],
        SourceKind.LOCAL,
    )
    return Selection(tree=tree).select_all()


def _export(selection: Selection, fmt: ExportFormat, resolver: ContentResolver | None = None, **kwargs: object) -> str:
    exporter = BundleExporter(resolver or ContentResolver())
    estimate = estimate_tokens(selection.files())
    source = kwargs.pop("source", LOCAL)
    return asyncio.run(
        exporter.export(fmt, selection, source, estimate, max_tokens=kwargs.pop("max_tokens", 1000), now=NOW, **kwargs),  # type: ignore[arg-type]
    )


@pytest.mark.unit
def test_build_tree_lines_uses_box_drawing_and_dirs_first() -> None:
    selection = _local_selection()

    assert build_tree_lines(selection.tree.roots) == [
        "├── src/",
        "│   ├── util/",
        "│   │   └── helpers.ts",
        "│   ├── a.ts",
        "│   └── b.png",
        "├── empty.txt",
        "└── README.md",
    ]


@pytest.mark.unit
def test_tree_text_renders_only_the_selected_subtree() -> None:
    selection = _local_selection().deselect_all().toggle("src/util/helpers.ts", True).toggle("README.md", True)

    assert render_tree_text(selection) == "├── src/\n│   └── util/\n│       └── helpers.ts\n└── README.md"


@pytest.mark.unit
def test_code_dump_orders_like_the_tree_and_uses_placeholders() -> None:
    text = _export(_local_selection(), ExportFormat.CODE)

    assert text.startswith("Project Structure:\n├── src/\n")
    assert "\n\n---\n\nFile Contents:\n" in text
    assert f"// src/a.ts\n{'x' * 40}\n" in text
    assert f"// src/b.png\n{BINARY_PLACEHOLDER}\n" in text
    assert f"// empty.txt\n{EMPTY_PLACEHOLDER}\n" in text
    order = [text.index(f"// {p}\n") for p in ("src/util/helpers.ts", "src/a.ts", "src/b.png", "empty.txt", "README.md")]
    assert order == sorted(order)
    assert text.endswith("# Demo\n")


@pytest.mark.unit
def test_code_dump_minifies_content_but_not_placeholders() -> None:
    selection = _local_selection()
    contents = asyncio.run(ContentResolver().resolve_many(selection.files(), LOCAL))

    text = build_code_dump(selection, contents, minify=True)

    assert "// src/util/helpers.ts\nexport const h = 1;\n" in text
    assert f"// src/b.png\n{BINARY_PLACEHOLDER}\n" in text


@pytest.mark.unit
def test_every_format_is_deterministic() -> None:
    selection = _local_selection()

    for fmt in ExportFormat:
        assert _export(selection, fmt) == _export(selection, fmt)


@pytest.mark.unit
def test_path_list_is_newline_joined_in_tree_order() -> None:
    selection = _local_selection()

    assert build_path_list(selection) == "src/util/helpers.ts\nsrc/a.ts\nsrc/b.png\nempty.txt\nREADME.md"
    assert _export(selection, ExportFormat.PATHS).endswith("README.md\n")


@pytest.mark.unit
def test_markdown_summary_reports_source_counts_and_budget() -> None:
    selection = _local_selection()
    estimate = TokenEstimate(exact_tokens=0, estimated_tokens=1500, exact_files=0, estimated_files=5)

    text = build_markdown_summary(selection, LOCAL, estimate, max_tokens=1000, now=NOW)

    assert "- Kind: local\n" in text
    assert "- Folder: demo\n" in text
    assert "(3 min ago, moderate)" in text
    assert "- Files scanned: 5\n" in text
    assert "- Selected files: 5\n" in text
    assert "- Selected lines: 15\n" in text
    assert "- Selected size: 2.0 KB\n" in text
    assert "- src/a.ts (40 B)\n" in text
    assert "- src/b.png (2.0 KB)\n" in text
    assert "- Estimated tokens: 1,500 / 1,000" in text
    assert "**Warning:**" in text
    assert text.rstrip().endswith("- README.md")


@pytest.mark.unit
def test_markdown_summary_for_github_without_commit_date() -> None:
    selection = _local_selection()
    source = GitHubSource(owner="octo", repo="demo", branch="main")

    text = build_markdown_summary(selection, source, TokenEstimate(), max_tokens=1000, now=NOW)

    assert "- Repository: octo/demo\n" in text
    assert "- Branch: main\n" in text
    assert "- Last commit: unknown\n" in text
    assert "**Warning:**" not in text


@pytest.mark.unit
def test_export_with_empty_selection_raises_no_files_selected() -> None:
    with pytest.raises(NoFilesSelectedError):
        _export(_local_selection().deselect_all(), ExportFormat.CODE)


@pytest.mark.unit
def test_remote_code_dump_keeps_failed_files_inline() -> None:
    class Fetcher:
        async def fetch(self, source: GitHubSource, path: str, content_hash: str | None = None) -> FetchedContent:
            if path == "b.py":
                raise ContentNotFoundError(path=path)
            return FetchedContent(content="print('a')", byte_size=10)

    source = GitHubSource(owner="octo", repo="demo", branch="main")
    tree = build_tree([FileRecord(path="a.py", byte_size=10), FileRecord(path="b.py", byte_size=5)], SourceKind.GITHUB)
    selection = Selection(tree=tree).select_all()

    text = _export(selection, ExportFormat.CODE, ContentResolver(Fetcher()), source=source)

    assert "// a.py\nprint('a')\n" in text
    assert "// b.py\n// Error fetching content for b.py: File not found" in text


@pytest.mark.unit
def test_minify_code() -> None:
    code = "function f ( a ) {  // add\n\n  /* block\n comment */\n  return  a ;\n}\n# trailing\n"

    assert minify_code(code) == "function f(a){return a ;}"
    assert minify_code("") == ""


@pytest.mark.unit
def test_format_choices() -> None:
    assert list(format_choices()) == ["tree", "code", "paths", "markdown"]


@pytest.mark.unit
def test_format_file_size() -> None:
    assert format_file_size(0) == "0 B"
    assert format_file_size(1023) == "1023 B"
    assert format_file_size(1024) == "1.0 KB"
    assert format_file_size(int(1.5 * 1024 * 1024)) == "1.5 MB"
