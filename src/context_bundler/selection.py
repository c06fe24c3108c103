"""Selection set and derived per-node checkbox state."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from context_bundler.config import SelectionState
from context_bundler.tree import FileNode, PathTree, TreeNode, list_descendant_files

if TYPE_CHECKING:
    from collections.abc import Iterable


@dataclass(frozen=True, eq=False)
class Selection:
    """The selected file paths of one tree revision.

    Every operation returns a new ``Selection``; directories are never stored,
    their state is always derived from their descendant files.
    """

    tree: PathTree
    paths: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "paths", frozenset(self.paths) & self.tree.file_paths)

    def __contains__(self, path: object) -> bool:
        return path in self.paths

    def __len__(self) -> int:
        return len(self.paths)

    def _resolve(self, node: TreeNode | str) -> TreeNode | None:
        return self.tree.find(node) if isinstance(node, str) else node

    def toggle(self, node: TreeNode | str, make_selected: bool) -> Selection:  # noqa: FBT001
        """Select or deselect a file, or every file under a directory.

        The direction comes from ``make_selected`` only: a partial directory
        becomes full when selected and empty when deselected.

        Args:
            node (TreeNode | str): the node, or its path
            make_selected (bool): True to add, False to remove

        Returns:
            Selection: the updated selection (``self`` if the node is unknown)
        """
        target = self._resolve(node)
        if target is None:
            return self
        affected = frozenset(list_descendant_files(target))
        if make_selected:
            return replace(self, paths=self.paths | affected)
        return replace(self, paths=self.paths - affected)

    def state(self, node: TreeNode | str) -> SelectionState:
        """Aggregate state: EMPTY, FULL or (directories only) PARTIAL."""
        target = self._resolve(node)
        if target is None:
            return SelectionState.EMPTY
        if isinstance(target, FileNode):
            return SelectionState.FULL if target.path in self.paths else SelectionState.EMPTY
        descendants = list_descendant_files(target)
        selected = sum(1 for p in descendants if p in self.paths)
        if selected == 0:
            return SelectionState.EMPTY
        if selected == len(descendants):
            return SelectionState.FULL
        return SelectionState.PARTIAL

    def select_all(self) -> Selection:
        return replace(self, paths=self.tree.file_paths)

    def deselect_all(self) -> Selection:
        return replace(self, paths=frozenset())

    def select_visible(self, visible_paths: Iterable[str]) -> Selection:
        """Add the visible file paths; directory paths in the list are ignored."""
        return replace(self, paths=self.paths | (frozenset(visible_paths) & self.tree.file_paths))

    def deselect_visible(self, visible_paths: Iterable[str]) -> Selection:
        return replace(self, paths=self.paths - frozenset(visible_paths))

    def replace_with(self, paths: Iterable[str]) -> Selection:
        """Replace the whole set; paths unknown to the tree are dropped."""
        return replace(self, paths=frozenset(paths))

    def rebase(self, tree: PathTree) -> Selection:
        """Carry the selection over to a refreshed tree of the same source."""
        return Selection(tree=tree, paths=self.paths)

    def ordered(self) -> list[str]:
        """Selected paths in tree order (directories first, then by name)."""
        return [node.path for node in self.tree.iter_files() if node.path in self.paths]

    def files(self) -> list[FileNode]:
        return [node for node in self.tree.iter_files() if node.path in self.paths]

    @property
    def total_lines(self) -> int:
        """Sum of known line counts of the selected files."""
        return sum(node.line_count or 0 for node in self.files())

    @property
    def total_bytes(self) -> int:
        """Sum of known byte sizes of the selected files."""
        return sum(node.byte_size or 0 for node in self.files())
