from __future__ import annotations

import io
import re
from typing import TYPE_CHECKING

from context_bundler.config import ExportFormat, SourceKind, format_file_size
from context_bundler.content import EMPTY_PLACEHOLDER, ContentResolver, ResolvedContent
from context_bundler.exceptions import NoFilesSelectedError
from context_bundler.freshness import freshness
from context_bundler.logging import logger
from context_bundler.sources import GitHubSource
from context_bundler.tree import DirectoryNode, TreeNode, induced_subtree, sorted_children

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from context_bundler.selection import Selection
    from context_bundler.sources import LocalSource
    from context_bundler.tokens import TokenEstimate

CODE_DUMP_TREE_HEADER = "Project Structure:"
CODE_DUMP_FILES_HEADER = "File Contents:"
CODE_DUMP_SEPARATOR = "---"

_LINE_COMMENT = re.compile(r"//.*|#.*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_BLANK_LINE = re.compile(r"^\s*[\r\n]", re.MULTILINE)
_WHITESPACE_RUN = re.compile(r"\s{2,}")
_BRACKET_SPACING = re.compile(r"\s*([{}()\[\]])\s*")


def build_tree_lines(roots: Mapping[str, TreeNode]) -> list[str]:
    """Build a box-drawing representation of a (sub-)tree.

    Directories come before files, then names sort case-insensitively, at
    every level. Directory names carry a trailing "/".

    Args:
        roots (Mapping[str, TreeNode]): root-level nodes to render

    Returns:
        list[str]: one string per node, suitable for joining with newlines
    """
    lines: list[str] = []

    def walk(children: Mapping[str, TreeNode], prefix: str) -> None:
        entries = sorted_children(children)
        for idx, node in enumerate(entries):
            last = idx == len(entries) - 1
            branch = "└── " if last else "├── "
            lines.append(prefix + branch + node.name + ("/" if node.is_dir else ""))
            if isinstance(node, DirectoryNode):
                ext = "    " if last else "│   "
                walk(node.children, prefix + ext)

    walk(roots, "")
    return lines


def render_tree_text(selection: Selection) -> str:
    """Render the sub-tree induced by the selected files."""
    return "\n".join(build_tree_lines(induced_subtree(selection.tree, selection.paths)))


def render_full_tree(roots: Mapping[str, TreeNode]) -> str:
    """Render a whole tree; this is what the suggestion adapter receives."""
    return "\n".join(build_tree_lines(roots))


def minify_code(code: str) -> str:
    """Best-effort, lossy shrinking of source text.

    Strips ``//`` and ``#`` line comments and ``/* */`` blocks, drops blank
    lines, collapses whitespace runs and tightens spacing around brackets.
    The result is not guaranteed to be valid code: a ``#`` or ``//`` inside
    a string literal is treated as a comment too.

    Args:
        code (str): the source text

    Returns:
        str: the minified text
    """
    if not code:
        return ""
    out = _LINE_COMMENT.sub("", code)
    out = _BLOCK_COMMENT.sub("", out)
    out = _BLANK_LINE.sub("", out)
    out = _WHITESPACE_RUN.sub(" ", out)
    out = _BRACKET_SPACING.sub(r"\1", out)
    return out.strip()


def build_path_list(selection: Selection) -> str:
    """Newline-joined selected paths, in tree order."""
    return "\n".join(selection.ordered())


def build_code_dump(
    selection: Selection,
    contents: Mapping[str, ResolvedContent],
    *,
    minify: bool = False,
) -> str:
    """Build the tree + code bundle.

    Files follow the tree order. Each one is a ``// <path>`` header followed
    by its content; placeholders (binary, fetch errors) are never minified.

    Args:
        selection (Selection): the selected files
        contents (Mapping[str, ResolvedContent]): resolved text per path
        minify (bool): apply ``minify_code`` to real content

    Returns:
        str: the bundle text
    """
    out = io.StringIO()
    out.write(f"{CODE_DUMP_TREE_HEADER}\n")
    out.write(render_tree_text(selection))
    out.write(f"\n\n{CODE_DUMP_SEPARATOR}\n\n")
    out.write(f"{CODE_DUMP_FILES_HEADER}\n")

    for path in selection.ordered():
        resolved = contents.get(path)
        text = resolved.text if resolved is not None else ""
        if resolved is not None and resolved.is_placeholder:
            body = text
        elif not text:
            body = EMPTY_PLACEHOLDER
        else:
            body = minify_code(text) if minify else text
        out.write(f"// {path}\n{body}\n\n")

    return out.getvalue().rstrip() + "\n"


def build_markdown_summary(
    selection: Selection,
    source: LocalSource | GitHubSource,
    estimate: TokenEstimate,
    *,
    max_tokens: int,
    now: datetime | None = None,
) -> str:
    """Build a human-readable report of the selection.

    The report lists the source identity, the snapshot freshness, aggregate
    counts and a warning when the estimate exceeds ``max_tokens``, followed
    by the selected paths with their sizes when known.

    Args:
        selection (Selection): the selected files
        source (LocalSource | GitHubSource): where the files come from
        estimate (TokenEstimate): the current token estimate
        max_tokens (int): configured token budget
        now (datetime | None): reference time for the freshness badge

    Returns:
        str: the markdown text
    """
    out = io.StringIO()
    out.write("# Context Bundle Summary\n\n")
    out.write("## Source\n")
    out.write(f"- Kind: {source.kind}\n")
    if isinstance(source, GitHubSource):
        out.write(f"- Repository: {source.full_name}\n")
        out.write(f"- Branch: {source.branch}\n")
    else:
        out.write(f"- Folder: {source.folder_name}\n")
    badge = freshness(source.snapshot_at, now=now)
    label = "Last commit" if source.kind == SourceKind.GITHUB else "Uploaded"
    if badge is None:
        out.write(f"- {label}: unknown\n")
    else:
        out.write(f"- {label}: {badge.timestamp.isoformat(timespec='seconds')} ({badge.label}, {badge.tier})\n")

    out.write("\n## Statistics\n")
    out.write(f"- Files scanned: {len(selection.tree):,}\n")
    out.write(f"- Selected files: {len(selection):,}\n")
    out.write(f"- Selected lines: {selection.total_lines:,}\n")
    out.write(f"- Selected size: {format_file_size(selection.total_bytes)}\n")
    out.write(
        f"- Estimated tokens: {estimate.total:,} / {max_tokens:,}"
        f" ({estimate.exact_files} exact, {estimate.estimated_files} estimated)\n",
    )
    if estimate.over_budget(max_tokens):
        out.write(f"\n> **Warning:** the estimated token count exceeds the budget of {max_tokens:,} tokens.\n")

    out.write("\n## Selected files\n")
    for node in selection.files():
        size = f" ({format_file_size(node.byte_size)})" if node.byte_size is not None else ""
        out.write(f"- {node.path}{size}\n")

    return out.getvalue().rstrip() + "\n"


class BundleExporter:
    """Produce the four export artifacts from a tree + selection.

    Args:
        resolver: used to hydrate unfetched remote files before a code dump.
    """

    def __init__(self, resolver: ContentResolver) -> None:
        self.resolver = resolver

    async def export(
        self,
        fmt: ExportFormat,
        selection: Selection,
        source: LocalSource | GitHubSource,
        estimate: TokenEstimate,
        *,
        minify: bool = False,
        max_tokens: int,
        now: datetime | None = None,
    ) -> str:
        """Export the selection in ``fmt``.

        Raises:
            NoFilesSelectedError: if nothing is selected

        Returns:
            str: the export artifact
        """
        if not selection.paths:
            raise NoFilesSelectedError
        logger.info("export_started", format=str(fmt), files=len(selection), source=source.label)
        if fmt is ExportFormat.TREE:
            return render_tree_text(selection) + "\n"
        if fmt is ExportFormat.PATHS:
            return build_path_list(selection) + "\n"
        if fmt is ExportFormat.MARKDOWN:
            return build_markdown_summary(selection, source, estimate, max_tokens=max_tokens, now=now)
        contents = await self.resolver.resolve_many(selection.files(), source)
        return build_code_dump(selection, contents, minify=minify)


def format_choices() -> Sequence[str]:
    return [str(f) for f in ExportFormat]
