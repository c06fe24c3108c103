from __future__ import annotations

from enum import StrEnum, auto

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SourceKind(StrEnum):
    """Where the files of a session come from."""

    LOCAL = auto()
    GITHUB = auto()


class EntryType(StrEnum):
    """Kind of entry reported by a source adapter."""

    FILE = auto()
    DIRECTORY = auto()
    OTHER = auto()


class ExportFormat(StrEnum):
    """The four text artifacts the exporter can produce."""

    TREE = auto()
    CODE = auto()
    PATHS = auto()
    MARKDOWN = auto()


class SelectionState(StrEnum):
    """Derived checkbox state of a tree node."""

    EMPTY = auto()
    FULL = auto()
    PARTIAL = auto()


class FreshnessTier(StrEnum):
    """Age bucket of a source snapshot."""

    JUST_NOW = auto()
    MODERATE = auto()
    STALE = auto()
    OLD = auto()


class NoticeKind(StrEnum):
    """User-visible, non-fatal conditions."""

    NO_MATCHING_FILES = auto()
    NO_FILES_SELECTED = auto()
    ADVISORY_EMPTY = auto()
    ADVISORY_INVALID = auto()
    STALE_HANDLE = auto()
    TREE_TRUNCATED = auto()


BINARY_EXTENSIONS: frozenset[str] = frozenset({
    ".bin",
    ".bmp",
    ".dat",
    ".db",
    ".dll",
    ".dylib",
    ".eot",
    ".exe",
    ".gif",
    ".gz",
    ".ico",
    ".jpeg",
    ".jpg",
    ".otf",
    ".pdf",
    ".png",
    ".rar",
    ".so",
    ".svg",
    ".tar",
    ".tiff",
    ".ttf",
    ".webp",
    ".woff",
    ".woff2",
    ".zip",
})

DEFAULT_EXCLUDE_FOLDERS: tuple[str, ...] = (
    "node_modules",
    ".git",
    ".next",
    "dist",
    "build",
    ".venv",
    "venv",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
    ".idea",
    ".vscode",
    "coverage",
)

DEFAULT_FILE_TYPES: tuple[str, ...] = (
    ".js",
    ".jsx",
    ".ts",
    ".tsx",
    ".py",
    ".md",
    ".json",
    ".toml",
    ".yaml",
    ".yml",
    ".css",
    ".scss",
    ".html",
    ".sql",
    ".sh",
    ".go",
    ".rs",
    ".java",
    ".c",
    ".cpp",
    ".h",
)

GLOBAL_PRESET_KEY = "__global__"

CHARS_PER_TOKEN = 4


def path_extension(path: str) -> str:
    """Return the lower-cased extension of ``path``, from its last dot.

    Args:
        path (str): slash-separated path

    Returns:
        str: the extension including the dot (e.g. ".png"), or "" when the
            last segment has no dot
    """
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name[name.rindex(".") :].lower()


def is_binary_path(path: str) -> bool:
    """Check the path's extension against the known binary set.

    This never looks at content: it is meant to run before any fetch.

    Args:
        path (str): slash-separated path

    Returns:
        bool: True if the file should never be fetched nor embedded
    """
    return path_extension(path) in BINARY_EXTENSIONS


def format_file_size(byte_size: int) -> str:
    """Format a byte count as ``B``, ``KB`` or ``MB`` with one decimal."""
    if byte_size < 1024:  # noqa: PLR2004
        return f"{byte_size} B"
    kb = byte_size / 1024
    if kb < 1024:  # noqa: PLR2004
        return f"{kb:.1f} KB"
    return f"{kb / 1024:.1f} MB"


class FileRecord(BaseModel):
    """Flat, path-bearing record produced by a source adapter.

    Attributes:
        path: Slash-joined path relative to the source root.
        entry_type: File, directory or other (submodules, links).
        line_count: Number of lines, known eagerly for local files.
        content: Text content, present for local files only.
        byte_size: Size in bytes as reported by the source.
        content_hash: Remote blob identifier; a change marker, not a checksum.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Slash-joined path relative to the source root")
    entry_type: EntryType = Field(default=EntryType.FILE, description="Kind of entry")
    line_count: int | None = Field(default=None, ge=0, description="Line count if known")
    content: str | None = Field(default=None, description="Text content if already loaded")
    byte_size: int | None = Field(default=None, ge=0, description="Size in bytes")
    content_hash: str | None = Field(default=None, description="Remote blob SHA")

    @computed_field
    @property
    def is_binary(self) -> bool:
        """Whether the path carries a known binary extension."""
        return is_binary_path(self.path)
