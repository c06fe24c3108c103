"""Single state container for one bundling session.

The tree, the selection, the expanded directories and the search result of
a session are replaced together as one ``WorkspaceState`` value. Anything
that awaits (export, debounced estimate, remote loads) reads the state it
captured, or re-reads ``Workspace.state`` after the await, never a mix.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from context_bundler.advisor import parse_suggestion_response, validate_suggestions
from context_bundler.config import ExportFormat, NoticeKind, SourceKind
from context_bundler.content import ContentResolver
from context_bundler.exceptions import (
    AdvisorySuggestionEmptyError,
    AdvisorySuggestionInvalidError,
    NoFilesSelectedError,
    NoMatchingFilesError,
    StaleHandleError,
)
from context_bundler.file_manipulation import load_local_folder
from context_bundler.logging import logger
from context_bundler.output_construction import BundleExporter, render_full_tree
from context_bundler.presets import InMemoryStore, NamedSelections
from context_bundler.search import SearchResult, expand_for, search_tree
from context_bundler.selection import Selection
from context_bundler.sources import GitHubSource, LocalSource, same_source
from context_bundler.tokens import DEFAULT_DEBOUNCE_SECONDS, DebouncedTokenEstimator, TokenEstimate, estimate_tokens
from context_bundler.tree import DirectoryNode, PathTree, ancestor_paths, build_tree

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime
    from pathlib import Path

    from context_bundler.advisor import SuggestionAdvisor
    from context_bundler.config import FileRecord
    from context_bundler.file_manipulation import FolderRegistry
    from context_bundler.github_source import GitHubTreeAdapter
    from context_bundler.tokens import Tokenizer
    from context_bundler.tree import FileNode, TreeNode

DEFAULT_MAX_TOKENS = 128_000


class Notice(BaseModel):
    """A user-visible, non-fatal condition."""

    model_config = ConfigDict(frozen=True)

    kind: NoticeKind
    message: str


class ExportOutcome(BaseModel):
    """Result of an export request: either text or a notice.

    ``stale`` is set when the tree was rebuilt while the export was running;
    the text then describes the previous revision.
    """

    model_config = ConfigDict(frozen=True)

    format: ExportFormat
    text: str | None = None
    notice: Notice | None = None
    revision: int = 0
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.text is not None


def _empty_tree() -> PathTree:
    return PathTree(roots={}, source_kind=SourceKind.LOCAL)


@dataclass(frozen=True, eq=False)
class WorkspaceState:
    """One revision of the session, replaced atomically."""

    source: LocalSource | GitHubSource | None
    tree: PathTree
    selection: Selection
    expanded: frozenset[str] = frozenset()
    search: SearchResult = field(default_factory=lambda: SearchResult(query="", matches=None))
    truncated: bool = False

    @classmethod
    def empty(cls) -> WorkspaceState:
        tree = _empty_tree()
        return cls(source=None, tree=tree, selection=Selection(tree=tree))


class Workspace:
    """Hold the session state and run every user operation against it.

    Args:
        resolver: content resolver; a local-only one is created when omitted.
            Its stale-response guard is bound to this workspace's source.
        tokenizer: exact tokenizer chosen at startup, or None
        presets: named selections of the active project
        max_tokens: token budget shown in summaries
        debounce: delay before a scheduled token estimate runs
    """

    def __init__(
        self,
        *,
        resolver: ContentResolver | None = None,
        tokenizer: Tokenizer | None = None,
        presets: NamedSelections | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.state = WorkspaceState.empty()
        self.resolver = resolver or ContentResolver()
        if self.resolver.current_source is None:
            self.resolver.current_source = lambda: self.state.source
        self.exporter = BundleExporter(self.resolver)
        self.tokenizer = tokenizer
        self.presets = presets or NamedSelections(InMemoryStore())
        self.max_tokens = max_tokens
        self.estimator = DebouncedTokenEstimator(tokenizer, delay=debounce)

    # ------------------------------------------------------------------ state

    @property
    def source(self) -> LocalSource | GitHubSource | None:
        return self.state.source

    @property
    def tree(self) -> PathTree:
        return self.state.tree

    @property
    def selection(self) -> Selection:
        return self.state.selection

    @property
    def expanded(self) -> frozenset[str]:
        return self.state.expanded

    def _set_selection(self, selection: Selection) -> None:
        if selection is self.state.selection:
            return
        self.state = replace(self.state, selection=selection)
        self._selection_changed()

    def _selection_changed(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.estimator.schedule(lambda: self.state.selection.files())

    # ------------------------------------------------------------ source load

    def load(
        self,
        source: LocalSource | GitHubSource,
        records: Iterable[FileRecord],
        *,
        truncated: bool = False,
    ) -> list[Notice]:
        """Build a new tree revision and apply the reset policy.

        Selection and expansion survive only when the new source has the same
        identity as the current one (same folder, or same owner/repo/branch);
        otherwise both are cleared.

        Args:
            source (LocalSource | GitHubSource): where the records come from
            records (Iterable[FileRecord]): records from the adapter
            truncated (bool): the upstream listing was incomplete

        Returns:
            list[Notice]: notices raised by this load (no files, truncation)
        """
        tree = build_tree(records, SourceKind(source.kind))
        previous = self.state
        if same_source(previous.source, source):
            selection = previous.selection.rebase(tree)
            expanded = previous.expanded
            search = search_tree(tree.roots, previous.search.query)
            logger.info("source_refreshed", source=source.label, revision=tree.revision, kept=len(selection))
        else:
            selection = Selection(tree=tree)
            expanded = frozenset()
            search = SearchResult(query="", matches=None)
            logger.info("source_changed", source=source.label, revision=tree.revision)
        self.state = WorkspaceState(
            source=source,
            tree=tree,
            selection=selection,
            expanded=expanded,
            search=search,
            truncated=truncated,
        )
        self._selection_changed()

        notices: list[Notice] = []
        if not len(tree):
            notices.append(Notice(kind=NoticeKind.NO_MATCHING_FILES, message=NoMatchingFilesError().message))
        if truncated:
            notices.append(
                Notice(
                    kind=NoticeKind.TREE_TRUNCATED,
                    message="The repository tree was truncated upstream; some files may be missing.",
                ),
            )
        return notices

    def open_folder(
        self,
        folder: Path,
        exclude_folders: Sequence[str] = (),
        file_types: Sequence[str] = (),
    ) -> list[Notice]:
        """Process a local folder; an empty result leaves the state untouched."""
        try:
            source, records = load_local_folder(folder, exclude_folders, file_types)
        except NoMatchingFilesError as e:
            return [Notice(kind=NoticeKind.NO_MATCHING_FILES, message=e.message)]
        return self.load(source, records)

    def reopen_project(
        self,
        registry: FolderRegistry,
        project_id: str,
        exclude_folders: Sequence[str] = (),
        file_types: Sequence[str] = (),
    ) -> list[Notice]:
        """Reload a remembered folder; a stale entry yields a re-select prompt."""
        try:
            source, records = registry.reopen_folder(project_id, exclude_folders, file_types)
        except StaleHandleError as e:
            return [Notice(kind=NoticeKind.STALE_HANDLE, message=e.message)]
        except NoMatchingFilesError as e:
            return [Notice(kind=NoticeKind.NO_MATCHING_FILES, message=e.message)]
        return self.load(source, records)

    async def open_github(
        self,
        adapter: GitHubTreeAdapter,
        owner: str,
        repo: str,
        branch: str,
        *,
        exclude_folders: Sequence[str] = (),
        file_types: Sequence[str] = (),
    ) -> list[Notice]:
        """Load a branch; an empty result leaves the state untouched."""
        try:
            listing = await adapter.load(
                owner,
                repo,
                branch,
                exclude_folders=exclude_folders,
                file_types=file_types,
            )
        except NoMatchingFilesError as e:
            return [Notice(kind=NoticeKind.NO_MATCHING_FILES, message=e.message)]
        return self.load(listing.source, listing.records, truncated=listing.truncated)

    # -------------------------------------------------------------- selection

    def toggle(self, path: str, make_selected: bool) -> None:  # noqa: FBT001
        self._set_selection(self.state.selection.toggle(path, make_selected))

    def select_all(self) -> None:
        self._set_selection(self.state.selection.select_all())

    def deselect_all(self) -> None:
        self._set_selection(self.state.selection.deselect_all())

    def select_visible(self) -> None:
        self._set_selection(self.state.selection.select_visible(self.visible_files()))

    def deselect_visible(self) -> None:
        self._set_selection(self.state.selection.deselect_visible(self.visible_files()))

    def select_paths(self, paths: Iterable[str]) -> None:
        """Replace the selection; paths unknown to the tree are dropped."""
        self._set_selection(self.state.selection.replace_with(paths))

    # -------------------------------------------------------------- expansion

    def _is_directory(self, path: str) -> bool:
        return isinstance(self.state.tree.find(path), DirectoryNode)

    def expand(self, path: str) -> None:
        if self._is_directory(path):
            self.state = replace(self.state, expanded=self.state.expanded | {path})

    def collapse(self, path: str) -> None:
        self.state = replace(self.state, expanded=self.state.expanded - {path})

    def toggle_expand(self, path: str) -> None:
        if path in self.state.expanded:
            self.collapse(path)
        else:
            self.expand(path)

    def expand_all(self) -> None:
        dirs = frozenset(p for f in self.state.tree.file_paths for p in ancestor_paths(f))
        self.state = replace(self.state, expanded=self.state.expanded | dirs)

    def collapse_all(self) -> None:
        self.state = replace(self.state, expanded=frozenset())

    # ----------------------------------------------------------------- search

    def search(self, query: str) -> SearchResult:
        """Filter the tree; matches' ancestors are added to the expanded set.

        A blank query clears filtering and leaves the expanded set unchanged.
        """
        result = search_tree(self.state.tree.roots, query)
        self.state = replace(self.state, search=result, expanded=expand_for(result, self.state.expanded))
        return result

    def is_visible(self, node: TreeNode) -> bool:
        """Shown in the tree view: matches the query and every ancestor is expanded."""
        if not self.state.search.is_visible(node.path):
            return False
        return all(a in self.state.expanded for a in ancestor_paths(node.path))

    def visible_files(self) -> list[str]:
        return [f.path for f in self.state.tree.iter_files() if self.is_visible(f)]

    # ----------------------------------------------------------------- tokens

    def estimate(self) -> TokenEstimate:
        """Estimate the current selection now, without waiting for the debounce."""
        return estimate_tokens(self.state.selection.files(), self.tokenizer)

    async def settled_estimate(self) -> TokenEstimate:
        """Wait for the pending debounced estimate and return the latest one."""
        return await self.estimator.flush()

    # ----------------------------------------------------------------- export

    async def export(
        self,
        fmt: ExportFormat,
        *,
        minify: bool = False,
        now: datetime | None = None,
    ) -> ExportOutcome:
        """Produce an export artifact of the current selection.

        An empty selection (or no source at all) yields a ``NO_FILES_SELECTED``
        notice instead of text.

        Args:
            fmt (ExportFormat): the artifact to produce
            minify (bool): minify file contents in a code dump
            now (datetime | None): reference time for the freshness badge

        Returns:
            ExportOutcome: the text, or a notice
        """
        state = self.state
        revision = state.tree.revision
        if state.source is None:
            notice = Notice(kind=NoticeKind.NO_FILES_SELECTED, message=NoFilesSelectedError().message)
            return ExportOutcome(format=fmt, notice=notice, revision=revision)
        try:
            text = await self.exporter.export(
                fmt,
                state.selection,
                state.source,
                estimate_tokens(state.selection.files(), self.tokenizer),
                minify=minify,
                max_tokens=self.max_tokens,
                now=now,
            )
        except NoFilesSelectedError as e:
            logger.info("export_skipped", reason="no_files_selected")
            return ExportOutcome(
                format=fmt,
                notice=Notice(kind=NoticeKind.NO_FILES_SELECTED, message=e.message),
                revision=revision,
            )
        stale = self.state.tree.revision != revision
        if stale:
            logger.warning("export_outdated", revision=revision, current=self.state.tree.revision)
        return ExportOutcome(format=fmt, text=text, revision=revision, stale=stale)

    async def fetch_selected(self) -> int:
        """Hydrate every selected remote file now so estimates become exact.

        Returns:
            int: the number of files that were fetched
        """
        state = self.state
        if state.source is None:
            return 0
        pending: list[FileNode] = [f for f in state.selection.files() if f.content is None]
        await self.resolver.resolve_many(pending, state.source)
        self._selection_changed()
        return sum(1 for f in pending if f.content is not None)

    # ------------------------------------------------------------ suggestions

    def apply_suggestions(self, paths: Iterable[str]) -> Notice | None:
        """Select the suggested paths that exist; the selection is unchanged on error."""
        try:
            valid = validate_suggestions(self.state.tree, paths)
        except AdvisorySuggestionEmptyError as e:
            return Notice(kind=NoticeKind.ADVISORY_EMPTY, message=e.message)
        except AdvisorySuggestionInvalidError as e:
            return Notice(kind=NoticeKind.ADVISORY_INVALID, message=e.message)
        self.select_paths(valid)
        logger.info("suggestions_applied", files=len(valid))
        return None

    async def suggest(self, advisor: SuggestionAdvisor) -> Notice | None:
        """Ask the advisor about the current tree and apply its answer."""
        tree_text = render_full_tree(self.state.tree.roots)
        return self.apply_suggestions(await advisor.suggest(tree_text))

    def apply_suggestion_response(self, text: str) -> Notice | None:
        """Apply a raw advisor reply (JSON array, possibly fenced)."""
        return self.apply_suggestions(parse_suggestion_response(text))

    # ---------------------------------------------------------------- presets

    def save_preset(self, name: str) -> None:
        self.presets.save(name, self.state.selection.ordered())

    def apply_preset(self, name: str) -> None:
        """Replace the selection with a preset; missing files are skipped.

        Raises:
            PresetNotFoundError: if no preset has this name
        """
        self._set_selection(self.presets.apply(name, self.state.selection))
