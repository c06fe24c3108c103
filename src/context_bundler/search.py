"""Case-insensitive search over names and cached file content."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from context_bundler.tree import FileNode, TreeNode, ancestor_paths

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


@dataclass(frozen=True)
class SearchResult:
    """Nodes to show for a query and directories to force open.

    ``matches`` is None for an empty query, meaning "no filtering".
    """

    query: str
    matches: frozenset[str] | None
    expand: frozenset[str] = frozenset()

    @property
    def active(self) -> bool:
        return self.matches is not None

    def is_visible(self, path: str) -> bool:
        return self.matches is None or path in self.matches


def _collect(node: TreeNode, needle: str, out: set[str]) -> bool:
    if isinstance(node, FileNode):
        hit = needle in node.name.lower() or (node.content is not None and needle in node.content.lower())
        if hit:
            out.add(node.path)
        return hit
    child_hit = False
    for child in node.children.values():
        child_hit = _collect(child, needle, out) or child_hit
    if child_hit or needle in node.name.lower():
        out.add(node.path)
        return True
    return False


def search_tree(roots: Mapping[str, TreeNode], query: str) -> SearchResult:
    """Match ``query`` against node names and in-memory file content.

    A directory matches when its own name matches or any descendant does; a
    file matches on its name or its already-resolved content. Matching is a
    plain case-insensitive substring test.

    Args:
        roots (Mapping[str, TreeNode]): root-level nodes
        query (str): search text; blank clears filtering

    Returns:
        SearchResult: the match set and the ancestors of every match
    """
    needle = query.strip().lower()
    if not needle:
        return SearchResult(query=query, matches=None)
    matches: set[str] = set()
    for node in roots.values():
        _collect(node, needle, matches)
    expand = {ancestor for path in matches for ancestor in ancestor_paths(path)}
    return SearchResult(query=query, matches=frozenset(matches), expand=frozenset(expand))


def expand_for(result: SearchResult, expanded: Iterable[str]) -> frozenset[str]:
    """Union the result's ancestors into the expanded set; never removes entries."""
    current = frozenset(expanded)
    if not result.matches:
        return current
    return current | result.expand
