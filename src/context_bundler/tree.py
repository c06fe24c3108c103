"""Hierarchical file tree built from flat path records."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from context_bundler.config import EntryType, FileRecord, SourceKind
from context_bundler.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

_REVISIONS = itertools.count(1)


@dataclass
class FileNode:
    """A file leaf.

    ``content`` and ``line_count`` (plus ``byte_size`` when it was unknown)
    are the only fields ever written after the tree is built, during content
    hydration. Writing the same value twice is harmless.
    """

    name: str
    path: str
    line_count: int | None = None
    content: str | None = None
    byte_size: int | None = None
    content_hash: str | None = None

    is_dir = False

    def hydrate(self, content: str) -> None:
        """Store fetched content and recompute the line count."""
        self.content = content
        self.line_count = count_lines(content)


@dataclass
class DirectoryNode:
    """A directory; ``children`` maps a segment name to its node."""

    name: str
    path: str
    children: dict[str, TreeNode] = field(default_factory=dict)
    content_hash: str | None = None

    is_dir = True


TreeNode = FileNode | DirectoryNode


@dataclass(frozen=True)
class PathConflict:
    """A path claimed by both a file and a directory; the directory won."""

    path: str
    dropped_line_count: int | None = None
    dropped_byte_size: int | None = None


@dataclass(frozen=True, eq=False)
class PathTree:
    """One immutable revision of the file tree and its derived indices.

    A new ``PathTree`` is built whenever the source changes; only the
    content of file nodes is filled in afterwards.
    """

    roots: dict[str, TreeNode]
    source_kind: SourceKind
    conflicts: tuple[PathConflict, ...] = ()
    skipped: tuple[str, ...] = ()
    revision: int = field(default_factory=lambda: next(_REVISIONS))
    file_paths: frozenset[str] = field(init=False)

    def __post_init__(self) -> None:
        paths = frozenset(p for node in self.roots.values() for p in list_descendant_files(node))
        object.__setattr__(self, "file_paths", paths)

    def find(self, path: str) -> TreeNode | None:
        return find_node(self.roots, path)

    def file(self, path: str) -> FileNode | None:
        node = self.find(path)
        return node if isinstance(node, FileNode) else None

    def iter_files(self) -> Iterator[FileNode]:
        """Yield every file node in tree order (directories first, then by name)."""
        for node in sorted_children(self.roots):
            yield from iter_file_nodes(node)

    def __len__(self) -> int:
        return len(self.file_paths)


def count_lines(content: str) -> int:
    """Count lines the way the upload step does: number of ``\\n``-separated parts."""
    return len(content.split("\n"))


def split_path(path: str) -> list[str] | None:
    """Split a slash path into segments, or return None if it is malformed.

    Leading/trailing slashes and backslashes are normalised; empty segments,
    ``.`` and ``..`` make the path malformed.
    """
    cleaned = (path or "").strip().replace("\\", "/").strip("/")
    if not cleaned:
        return None
    parts = cleaned.split("/")
    if any(p in {"", ".", ".."} for p in parts):
        return None
    return parts


def build_tree(records: Iterable[FileRecord], source_kind: SourceKind) -> PathTree:
    """Convert flat records into a nested tree.

    For every record the path is split on "/", intermediate directories are
    walked or created, and the last segment becomes a file (or a directory
    for remote ``tree`` entries). GitHub records are sorted by path first so
    directories are established in a deterministic order.

    When a segment is claimed by both a file and a directory, the directory
    wins: the file data is dropped, a ``PathConflict`` is recorded and a
    warning is logged. Malformed paths are skipped with a warning.

    Args:
        records (Iterable[FileRecord]): records from a source adapter, in any order
        source_kind (SourceKind): which adapter produced them

    Returns:
        PathTree: the new tree revision
    """
    items = list(records)
    if source_kind is SourceKind.GITHUB:
        items.sort(key=lambda r: r.path)

    roots: dict[str, TreeNode] = {}
    conflicts: list[PathConflict] = []
    skipped: list[str] = []

    for rec in items:
        if rec.entry_type is EntryType.OTHER:
            continue
        parts = split_path(rec.path)
        if parts is None:
            logger.warning("malformed_path_skipped", path=rec.path)
            skipped.append(rec.path)
            continue

        level = roots
        current = ""
        for segment in parts[:-1]:
            current = f"{current}/{segment}" if current else segment
            level = _ensure_directory(level, segment, current, conflicts).children

        name = parts[-1]
        full = f"{current}/{name}" if current else name
        if rec.entry_type is EntryType.DIRECTORY:
            directory = _ensure_directory(level, name, full, conflicts)
            directory.content_hash = rec.content_hash
            continue

        existing = level.get(name)
        if isinstance(existing, DirectoryNode):
            logger.warning("path_conflict", path=full, kept="directory", dropped="file")
            conflicts.append(
                PathConflict(path=full, dropped_line_count=rec.line_count, dropped_byte_size=rec.byte_size),
            )
            continue
        level[name] = FileNode(
            name=name,
            path=full,
            line_count=rec.line_count,
            content=rec.content,
            byte_size=rec.byte_size,
            content_hash=rec.content_hash,
        )

    return PathTree(roots=roots, source_kind=source_kind, conflicts=tuple(conflicts), skipped=tuple(skipped))


def _ensure_directory(
    level: dict[str, TreeNode],
    name: str,
    path: str,
    conflicts: list[PathConflict],
) -> DirectoryNode:
    existing = level.get(name)
    if isinstance(existing, DirectoryNode):
        return existing
    if isinstance(existing, FileNode):
        logger.warning("path_conflict", path=path, kept="directory", dropped="file")
        conflicts.append(
            PathConflict(path=path, dropped_line_count=existing.line_count, dropped_byte_size=existing.byte_size),
        )
    directory = DirectoryNode(name=name, path=path)
    level[name] = directory
    return directory


def find_node(roots: Mapping[str, TreeNode], path: str) -> TreeNode | None:
    """Find a node by its full path in O(depth).

    Args:
        roots (Mapping[str, TreeNode]): root-level nodes
        path (str): slash-joined path

    Returns:
        TreeNode | None: the node, or None if any segment is missing
    """
    parts = split_path(path)
    if parts is None:
        return None
    level: Mapping[str, TreeNode] = roots
    node: TreeNode | None = None
    for part in parts:
        node = level.get(part)
        if node is None:
            return None
        level = node.children if isinstance(node, DirectoryNode) else {}
    return node


def list_descendant_files(node: TreeNode) -> list[str]:
    """Collect every file path under ``node`` (itself, for a file)."""
    if isinstance(node, FileNode):
        return [node.path]
    out: list[str] = []
    for child in node.children.values():
        out.extend(list_descendant_files(child))
    return out


def sort_key(node: TreeNode) -> tuple[bool, str, str]:
    """Directories before files, then case-insensitive name, then exact name."""
    return (not node.is_dir, node.name.lower(), node.name)


def sorted_children(children: Mapping[str, TreeNode]) -> list[TreeNode]:
    return sorted(children.values(), key=sort_key)


def iter_file_nodes(node: TreeNode) -> Iterator[FileNode]:
    """Yield file nodes under ``node`` in display order."""
    if isinstance(node, FileNode):
        yield node
        return
    for child in sorted_children(node.children):
        yield from iter_file_nodes(child)


def ancestor_paths(path: str) -> list[str]:
    """Return every proper ancestor of ``path``, outermost first.

    >>> ancestor_paths("a/b/c.ts")
    ['a', 'a/b']
    """
    parts = path.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


def induced_subtree(tree: PathTree, paths: Iterable[str]) -> dict[str, TreeNode]:
    """Build the sub-tree spanned by ``paths``.

    Directories appear only when at least one of their descendants is in
    ``paths``; unknown paths and directory paths are ignored. File nodes are
    shared with ``tree``, directories are fresh copies.

    Args:
        tree (PathTree): the tree to project
        paths (Iterable[str]): selected file paths

    Returns:
        dict[str, TreeNode]: root-level nodes of the projection
    """
    out: dict[str, TreeNode] = {}
    for path in paths:
        node = tree.file(path)
        if node is None:
            continue
        level = out
        parts = path.split("/")
        for i, segment in enumerate(parts[:-1]):
            existing = level.get(segment)
            if not isinstance(existing, DirectoryNode):
                existing = DirectoryNode(name=segment, path="/".join(parts[: i + 1]))
                level[segment] = existing
            level = existing.children
        level[parts[-1]] = node
    return out
