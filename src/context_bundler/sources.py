"""Tagged source variants and source-identity comparison."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from context_bundler.config import SourceKind
from context_bundler.exceptions import InvalidSourceError


class LocalSource(BaseModel):
    """A folder read from the local filesystem.

    ``uploaded_at`` is captured once per processing run and drives the
    freshness badge. ``root`` is the resolved folder path; two folders that
    share a name are different sources.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["local"] = SourceKind.LOCAL.value
    folder_name: str
    root: str = ""
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def identity(self) -> tuple[str, ...]:
        return (self.kind, self.root or self.folder_name)

    @property
    def snapshot_at(self) -> datetime | None:
        return self.uploaded_at

    @property
    def label(self) -> str:
        return self.folder_name


class GitHubSource(BaseModel):
    """A repository branch on GitHub.

    ``commit_date`` is the branch head commit timestamp, when known.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["github"] = SourceKind.GITHUB.value
    owner: str
    repo: str
    branch: str
    commit_date: datetime | None = None

    @property
    def identity(self) -> tuple[str, ...]:
        return (self.kind, self.owner.lower(), self.repo.lower(), self.branch)

    @property
    def snapshot_at(self) -> datetime | None:
        return self.commit_date

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def label(self) -> str:
        return f"{self.full_name}@{self.branch}"


Source = Annotated[LocalSource | GitHubSource, Field(discriminator="kind")]

_SOURCE_ADAPTER: TypeAdapter[LocalSource | GitHubSource] = TypeAdapter(Source)


def same_source(a: LocalSource | GitHubSource | None, b: LocalSource | GitHubSource | None) -> bool:
    """Tell whether two sources describe the same origin.

    Only identity tuples are compared: a refreshed snapshot of the same
    branch (new commit date, new tree object) is still the same source.

    Args:
        a: the previous source, or None
        b: the new source, or None

    Returns:
        bool: True when selection and expansion may be preserved
    """
    if a is None or b is None:
        return False
    return a.identity == b.identity


def normalize_source(raw: dict[str, Any]) -> LocalSource | GitHubSource:
    """Normalise a loose mapping into a tagged source, once, at the boundary.

    Accepts the tagged shape (``{"kind": "github", "owner": ...}``) and the
    older ``{"type": "github", "repoInfo": {"owner", "repo", "branch"}}``
    shape stored by earlier project records.

    Args:
        raw (dict[str, Any]): the mapping to normalise

    Raises:
        InvalidSourceError: if the mapping matches neither shape

    Returns:
        LocalSource | GitHubSource: the tagged variant
    """
    data = dict(raw)
    if "kind" not in data and "type" in data:
        data["kind"] = data.pop("type")
        repo_info = data.pop("repoInfo", None) or {}
        data.update({k: v for k, v in repo_info.items() if k in {"owner", "repo", "branch"}})
        if "folderName" in data:
            data["folder_name"] = data.pop("folderName")
        if "commitDate" in data:
            data["commit_date"] = data.pop("commitDate")
    try:
        return _SOURCE_ADAPTER.validate_python(data)
    except ValidationError as e:
        msg = f"Unknown source description: {e.error_count()} validation error(s)"
        raise InvalidSourceError(message=msg) from e
