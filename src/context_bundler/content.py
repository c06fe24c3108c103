"""Content resolution: cached local text, on-demand remote fetches."""

from __future__ import annotations

import asyncio
from enum import StrEnum, auto
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict

from context_bundler.config import is_binary_path
from context_bundler.exceptions import ContentFetchError, ContentNotFoundError
from context_bundler.logging import logger
from context_bundler.sources import GitHubSource, LocalSource, same_source

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from context_bundler.tree import FileNode

BINARY_PLACEHOLDER = "// [Binary file not included]"
EMPTY_PLACEHOLDER = "// [Empty file]"


def error_placeholder(path: str, message: str) -> str:
    """Inline comment that replaces a file whose content could not be fetched."""
    return f"// Error fetching content for {path}: {message or 'Unknown error'}"


class ContentStatus(StrEnum):
    """How the text of a resolved file was obtained."""

    OK = auto()
    BINARY = auto()
    FAILED = auto()


class FetchedContent(BaseModel):
    """Decoded text returned by a content adapter."""

    model_config = ConfigDict(frozen=True)

    content: str
    byte_size: int


class ResolvedContent(BaseModel):
    """Text of one file as it will appear in an export."""

    model_config = ConfigDict(frozen=True)

    path: str
    text: str
    status: ContentStatus = ContentStatus.OK

    @property
    def is_placeholder(self) -> bool:
        return self.status is not ContentStatus.OK


class ContentFetcher(Protocol):
    """Remote content adapter.

    Implementations raise ``ContentNotFoundError`` for missing files and
    ``ContentFetchError`` for anything else.
    """

    async def fetch(self, source: GitHubSource, path: str, content_hash: str | None = None) -> FetchedContent: ...


class ContentResolver:
    """Supply text for file nodes, fetching and caching remote content.

    Args:
        fetcher: remote adapter; None for purely local sessions.
        current_source: returns the workspace's source at call time. When a
            fetch completes after the source changed, its result is not
            written back into the (old) tree.
    """

    def __init__(
        self,
        fetcher: ContentFetcher | None = None,
        current_source: Callable[[], LocalSource | GitHubSource | None] | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.current_source = current_source

    def _is_current(self, source: LocalSource | GitHubSource) -> bool:
        if self.current_source is None:
            return True
        return same_source(self.current_source(), source)

    async def resolve(self, node: FileNode, source: LocalSource | GitHubSource) -> ResolvedContent:
        """Resolve one file and tag how the text was obtained.

        Binary files are checked first and never fetched. Cached content is
        returned without I/O. A failed fetch yields an inline error comment
        instead of raising.

        Args:
            node (FileNode): the file to resolve
            source (LocalSource | GitHubSource): the source captured when the
                export started

        Returns:
            ResolvedContent: the text and its status
        """
        if is_binary_path(node.path):
            logger.info("binary_file_skipped", path=node.path)
            return ResolvedContent(path=node.path, text=BINARY_PLACEHOLDER, status=ContentStatus.BINARY)
        if node.content is not None:
            return ResolvedContent(path=node.path, text=node.content)
        if not isinstance(source, GitHubSource):
            return ResolvedContent(path=node.path, text="")
        if self.fetcher is None:
            logger.warning("content_fetch_failed", path=node.path, error="no content fetcher configured")
            return ResolvedContent(
                path=node.path,
                text=error_placeholder(node.path, "no content fetcher configured"),
                status=ContentStatus.FAILED,
            )

        try:
            fetched = await self.fetcher.fetch(source, node.path, node.content_hash)
        except (ContentNotFoundError, ContentFetchError) as e:
            logger.warning("content_fetch_failed", path=node.path, error=str(e))
            return ResolvedContent(
                path=node.path,
                text=error_placeholder(node.path, str(e)),
                status=ContentStatus.FAILED,
            )
        except Exception as e:
            logger.warning("content_fetch_failed", path=node.path, error=repr(e), exc_info=True)
            return ResolvedContent(
                path=node.path,
                text=error_placeholder(node.path, str(e)),
                status=ContentStatus.FAILED,
            )

        if self._is_current(source):
            node.hydrate(fetched.content)
            if node.byte_size is None:
                node.byte_size = fetched.byte_size
        else:
            logger.info("stale_response_discarded", path=node.path, source=source.label)
        return ResolvedContent(path=node.path, text=fetched.content)

    async def get_content(self, node: FileNode, source: LocalSource | GitHubSource) -> str:
        """Return the node's text (or its binary/error placeholder)."""
        return (await self.resolve(node, source)).text

    async def resolve_many(
        self,
        nodes: Iterable[FileNode],
        source: LocalSource | GitHubSource,
    ) -> dict[str, ResolvedContent]:
        """Resolve several files concurrently.

        All fetches are started together and awaited together; one failure
        only affects its own entry.

        Returns:
            dict[str, ResolvedContent]: path to resolved content, in input order
        """
        unique = {node.path: node for node in nodes}
        pending = [n for n in unique.values() if n.content is None and not is_binary_path(n.path)]
        if pending and isinstance(source, GitHubSource):
            logger.info("fetching_remote_content", files=len(pending), source=source.label)
        results = await asyncio.gather(*(self.resolve(node, source) for node in unique.values()))
        return {res.path: res for res in results}
