from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class ContextBundlerError(Exception):
    """Base exception for errors in the context_bundler package."""

    message: str = "context_bundler error"

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ContentNotFoundError(ContextBundlerError):
    """Raised by a content adapter when the remote file does not exist."""

    path: str = ""
    message: str = "File not found. Ensure the path is correct and you have access."


@dataclass(frozen=True)
class ContentFetchError(ContextBundlerError):
    """Raised by a content adapter for any failure other than "not found"."""

    path: str = ""
    reason: str = ""
    message: str = "Failed to fetch file content"

    def __str__(self) -> str:
        return self.reason or self.message


@dataclass(frozen=True)
class NoMatchingFilesError(ContextBundlerError):
    """Raised when a processing run yields zero files after filtering."""

    source: str = ""
    message: str = "No matching files found based on the current filters."


@dataclass(frozen=True)
class NoFilesSelectedError(ContextBundlerError):
    """Raised when an export is attempted with an empty selection."""

    message: str = "No files selected."


@dataclass(frozen=True)
class AdvisorySuggestionEmptyError(ContextBundlerError):
    """Raised when the suggestion adapter returned nothing at all."""

    message: str = "The suggestion service did not return any files."


@dataclass(frozen=True)
class AdvisorySuggestionInvalidError(ContextBundlerError):
    """Raised when none of the suggested paths exist in the current tree."""

    rejected: tuple[str, ...] = field(default_factory=tuple)
    message: str = "None of the suggested files exist in the current tree."


@dataclass(frozen=True)
class StaleHandleError(ContextBundlerError):
    """Raised when a remembered local folder is no longer accessible."""

    project_id: str = ""
    folder: Path | None = None
    message: str = "The folder is no longer accessible. Please re-select it."


@dataclass(frozen=True)
class PresetNotFoundError(ContextBundlerError):
    """Raised when applying a preset name that was never saved."""

    name: str = ""
    message: str = "No preset with this name."


@dataclass(frozen=True)
class InvalidSourceError(ContextBundlerError):
    """Raised when a source description cannot be normalised to a known variant."""

    message: str = "Unknown source description."
