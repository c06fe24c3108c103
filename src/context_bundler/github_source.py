"""GitHub tree and content adapters backed by PyGithub.

PyGithub is synchronous; every call is run in a worker thread so that
concurrent fetches for one export overlap instead of queueing on the loop.
"""

from __future__ import annotations

import asyncio
import base64
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from github import Auth, Github, GithubException, UnknownObjectException
from pydantic import BaseModel, ConfigDict, Field

from context_bundler.config import EntryType, FileRecord, path_extension
from context_bundler.content import FetchedContent
from context_bundler.exceptions import ContentFetchError, ContentNotFoundError, InvalidSourceError, NoMatchingFilesError
from context_bundler.logging import logger
from context_bundler.sources import GitHubSource

if TYPE_CHECKING:
    from collections.abc import Sequence

    from github.Repository import Repository

_REPO_SPEC = re.compile(r"^(?:https?://github\.com/)?([\w.-]+)/([\w.-]+?)(?:\.git)?/?$")

_GIT_TYPES = {
    "blob": EntryType.FILE,
    "tree": EntryType.DIRECTORY,
}


class RemoteTreeListing(BaseModel):
    """One branch listing: filtered file records plus upstream flags."""

    model_config = ConfigDict(frozen=True)

    source: GitHubSource
    records: list[FileRecord] = Field(default_factory=list)
    truncated: bool = False
    total_entries: int = 0


def parse_repo_spec(spec: str) -> tuple[str, str]:
    """Split ``owner/repo`` (or a github.com URL) into its two parts.

    Raises:
        InvalidSourceError: if ``spec`` does not name a repository

    Returns:
        tuple[str, str]: owner and repository name
    """
    match = _REPO_SPEC.match(spec.strip())
    if not match:
        raise InvalidSourceError(message=f"Not a GitHub repository: {spec!r} (expected owner/repo)")
    return match.group(1), match.group(2)


def make_client(token: str | None = None) -> Github:
    """PyGithub client; anonymous when no token is given (low rate limit)."""
    if token:
        return Github(auth=Auth.Token(token))
    return Github()


def entry_type_for(git_type: str) -> EntryType:
    return _GIT_TYPES.get(git_type, EntryType.OTHER)


def is_excluded_remote(path: str, exclude_folders: Sequence[str]) -> bool:
    """A remote path is excluded when any directory segment, or the path itself, is listed."""
    excluded = set(exclude_folders)
    return path in excluded or any(segment in excluded for segment in path.split("/")[:-1])


def matches_remote_type(path: str, file_types: Sequence[str]) -> bool:
    """``*`` or an empty list allows all; otherwise an exact path or a ``.ext`` entry must match."""
    if not file_types or "*" in file_types:
        return True
    ext = path_extension(path)
    return any(path == ftype or (ftype.startswith(".") and ext == ftype.lower()) for ftype in file_types)


def filter_remote_records(
    records: Sequence[FileRecord],
    exclude_folders: Sequence[str] = (),
    file_types: Sequence[str] = (),
) -> list[FileRecord]:
    """Keep the file entries a branch load should show.

    Args:
        records (Sequence[FileRecord]): every entry of the listing
        exclude_folders (Sequence[str]): excluded directory names
        file_types (Sequence[str]): allowed file types

    Returns:
        list[FileRecord]: file records only, after exclusion and type filters
    """
    return [
        rec
        for rec in records
        if rec.entry_type is EntryType.FILE
        and not is_excluded_remote(rec.path, exclude_folders)
        and matches_remote_type(rec.path, file_types)
    ]


def _commit_date(commit: Any) -> datetime | None:  # noqa: ANN401
    git_commit = getattr(commit, "commit", None)
    for role in ("committer", "author"):
        person = getattr(git_commit, role, None)
        date = getattr(person, "date", None)
        if isinstance(date, datetime):
            return date
    return None


class GitHubTreeAdapter:
    """List repositories, branches and branch trees.

    Args:
        client: authenticated (or anonymous) PyGithub client
    """

    def __init__(self, client: Github) -> None:
        self.client = client

    def _repo(self, owner: str, repo: str) -> Repository:
        try:
            return self.client.get_repo(f"{owner}/{repo}")
        except UnknownObjectException as e:
            msg = f"Repository not found, or access denied: {owner}/{repo}"
            raise InvalidSourceError(message=msg) from e
        except GithubException as e:
            msg = f"GitHub API error: {e.status}"
            raise InvalidSourceError(message=msg) from e

    async def list_branches(self, owner: str, repo: str) -> list[str]:
        def _list() -> list[str]:
            return [b.name for b in self._repo(owner, repo).get_branches()]

        return await asyncio.to_thread(_list)

    async def default_branch(self, owner: str, repo: str) -> str:
        return await asyncio.to_thread(lambda: self._repo(owner, repo).default_branch)

    def _load_sync(
        self,
        owner: str,
        repo: str,
        branch: str,
        exclude_folders: Sequence[str],
        file_types: Sequence[str],
    ) -> RemoteTreeListing:
        gh_repo = self._repo(owner, repo)
        try:
            head = gh_repo.get_branch(branch).commit
            git_tree = gh_repo.get_git_tree(head.commit.tree.sha, recursive=True)
        except UnknownObjectException as e:
            msg = f"Branch not found, or access denied: {owner}/{repo}@{branch}"
            raise InvalidSourceError(message=msg) from e
        except GithubException as e:
            msg = f"GitHub API error: {e.status}"
            raise InvalidSourceError(message=msg) from e

        truncated = bool(git_tree.raw_data.get("truncated", False))
        if truncated:
            logger.warning("remote_tree_truncated", repo=f"{owner}/{repo}", branch=branch)

        entries = [
            FileRecord(
                path=element.path,
                entry_type=entry_type_for(element.type),
                byte_size=element.size,
                content_hash=element.sha,
            )
            for element in git_tree.tree
        ]
        source = GitHubSource(owner=owner, repo=repo, branch=branch, commit_date=_commit_date(head))
        records = filter_remote_records(entries, exclude_folders, file_types)
        logger.info(
            "remote_tree_loaded",
            repo=source.full_name,
            branch=branch,
            entries=len(entries),
            files=len(records),
        )
        return RemoteTreeListing(source=source, records=records, truncated=truncated, total_entries=len(entries))

    async def load(
        self,
        owner: str,
        repo: str,
        branch: str,
        *,
        exclude_folders: Sequence[str] = (),
        file_types: Sequence[str] = (),
    ) -> RemoteTreeListing:
        """Load a branch tree and filter it.

        Args:
            owner (str): repository owner
            repo (str): repository name
            branch (str): branch name
            exclude_folders (Sequence[str]): excluded directory names
            file_types (Sequence[str]): allowed file types

        Raises:
            InvalidSourceError: if the repository or branch cannot be read
            NoMatchingFilesError: if no file is left after filtering

        Returns:
            RemoteTreeListing: the source, file records and truncation flag
        """
        listing = await asyncio.to_thread(self._load_sync, owner, repo, branch, exclude_folders, file_types)
        if not listing.records:
            raise NoMatchingFilesError(source=listing.source.label)
        return listing


class GitHubContentFetcher:
    """Fetch one file's text, by path on the branch or by blob SHA.

    Args:
        client: PyGithub client shared with the tree adapter
        use_blob_sha: fetch through the git blob API when the tree listing
            provided a SHA; otherwise the contents API at the branch ref
    """

    def __init__(self, client: Github, *, use_blob_sha: bool = False) -> None:
        self.client = client
        self.use_blob_sha = use_blob_sha
        self._repos: dict[str, Repository] = {}

    def _repo(self, source: GitHubSource) -> Repository:
        key = source.full_name.lower()
        if key not in self._repos:
            self._repos[key] = self.client.get_repo(source.full_name)
        return self._repos[key]

    def _fetch_sync(self, source: GitHubSource, path: str, content_hash: str | None) -> FetchedContent:
        try:
            repo = self._repo(source)
            if self.use_blob_sha and content_hash:
                blob = repo.get_git_blob(content_hash)
                raw = base64.b64decode(blob.content) if blob.encoding == "base64" else blob.content.encode("utf-8")
                return FetchedContent(content=raw.decode("utf-8", errors="replace"), byte_size=blob.size)
            found = repo.get_contents(path, ref=source.branch)
        except UnknownObjectException as e:
            raise ContentNotFoundError(path=path) from e
        except GithubException as e:
            raise ContentFetchError(path=path, reason=f"GitHub API error: {e.status}") from e
        if isinstance(found, list):
            raise ContentFetchError(path=path, reason="Path is a directory")
        raw = found.decoded_content or b""
        return FetchedContent(content=raw.decode("utf-8", errors="replace"), byte_size=found.size or len(raw))

    async def fetch(self, source: GitHubSource, path: str, content_hash: str | None = None) -> FetchedContent:
        """Fetch decoded UTF-8 text.

        Raises:
            ContentNotFoundError: if the file does not exist at this ref
            ContentFetchError: for any other API failure

        Returns:
            FetchedContent: the text and its byte size
        """
        return await asyncio.to_thread(self._fetch_sync, source, path, content_hash)
