from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import TYPE_CHECKING

from context_bundler.config import FileRecord, is_binary_path, path_extension
from context_bundler.exceptions import InvalidSourceError, NoMatchingFilesError, StaleHandleError
from context_bundler.logging import logger
from context_bundler.sources import LocalSource, normalize_source
from context_bundler.tree import count_lines

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_bundler.presets import KeyValueStore
    from context_bundler.sources import GitHubSource

FOLDER_REGISTRY_KEY = "__folders__"
SOURCE_REGISTRY_KEY = "__sources__"


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def split_csv(value: str | Sequence[str] | None) -> list[str]:
    """Split a comma list ("a, b,c") into trimmed, non-empty items.

    Lists are accepted too, so repeated CLI options and comma lists can be
    mixed freely.
    """
    if not value:
        return []
    items = [value] if isinstance(value, str) else list(value)
    return [part.strip() for item in items for part in item.split(",") if part.strip()]


def is_excluded_folder(name: str, exclude_folders: Sequence[str]) -> bool:
    """Check a directory name against the exclusion list.

    A directory is pruned when its name equals an entry or contains it.

    Args:
        name (str): directory name (one segment)
        exclude_folders (Sequence[str]): excluded folder names

    Returns:
        bool: True if the directory must not be walked
    """
    return any(name == folder or folder in name for folder in exclude_folders if folder)


def matches_file_type(name: str, file_types: Sequence[str]) -> bool:
    """Check a file name against the allowed types of a local walk.

    An empty list or a ``*`` entry allows everything. Otherwise the name must
    equal an entry, carry it as ``.ext`` extension, or end with it.

    Args:
        name (str): file name
        file_types (Sequence[str]): allowed types

    Returns:
        bool: True if the file is kept
    """
    if not file_types or "*" in file_types:
        return True
    ext = path_extension(name)
    return any(
        name == ftype or (ftype.startswith(".") and ext == ftype.lower()) or name.endswith(ftype)
        for ftype in file_types
    )


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Strip whitespace, drop empty patterns and replace backslashes with
    forward slashes.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


def match_any_glob(rel: str, globs: Sequence[str]) -> bool:
    """Check if a relative path matches any of the provided glob patterns."""
    return any(fnmatch.fnmatch(rel, g) for g in globs)


def paths_matching(paths: Sequence[str], globs: Sequence[str]) -> list[str]:
    """Keep the paths matching at least one glob, in their original order.

    Args:
        paths (Sequence[str]): candidate relative paths
        globs (Sequence[str]): glob patterns (relative to the source root)

    Returns:
        list[str]: the matching paths
    """
    patterns = normalize_globs(globs)
    return [p for p in paths if match_any_glob(p, patterns)]


def walk_folder(root: Path, exclude_folders: Sequence[str], file_types: Sequence[str]) -> list[Path]:
    """Walk the directory tree rooted at `root` and return the kept files.

    Excluded directories are pruned before descending into them, so their
    content is never listed.

    Args:
        root (Path): the root directory to walk
        exclude_folders (Sequence[str]): directory names to prune
        file_types (Sequence[str]): allowed file types

    Returns:
        list[Path]: kept files, sorted by relative path
    """
    results: list[Path] = []
    for current, dirs, files in os.walk(root):
        kept = [d for d in dirs if not is_excluded_folder(d, exclude_folders)]
        for pruned in sorted(set(dirs) - set(kept)):
            logger.debug("excluded_directory_skipped", path=relpath(Path(current) / pruned, root))
        dirs[:] = kept
        for f in files:
            p = Path(current) / f
            if p.is_file() and matches_file_type(f, file_types):
                results.append(p)
    return sorted(results, key=lambda p: relpath(p, root).lower())


def read_record(path: Path, root: Path) -> FileRecord | None:
    """Build the record of one local file.

    Text is decoded as UTF-8 with replacement characters; binary files keep
    their size only and are never read.

    Args:
        path (Path): the file to read
        root (Path): the chosen folder

    Returns:
        FileRecord | None: the record, or None if the file could not be read
    """
    rel = relpath(path, root)
    try:
        byte_size = path.stat().st_size
        if is_binary_path(rel):
            return FileRecord(path=rel, byte_size=byte_size)
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("file_unreadable", path=rel, error=str(e))
        return None
    return FileRecord(path=rel, line_count=count_lines(content), content=content, byte_size=byte_size)


def load_local_folder(
    folder: Path,
    exclude_folders: Sequence[str] = (),
    file_types: Sequence[str] = (),
) -> tuple[LocalSource, list[FileRecord]]:
    """Read a local folder into records, for one processing run.

    Args:
        folder (Path): the chosen folder
        exclude_folders (Sequence[str]): directory names to prune
        file_types (Sequence[str]): allowed file types

    Raises:
        InvalidSourceError: if ``folder`` is not a directory
        NoMatchingFilesError: if nothing is left after filtering

    Returns:
        tuple[LocalSource, list[FileRecord]]: the source (with its upload
            timestamp) and one record per kept file
    """
    root = folder.resolve()
    if not root.is_dir():
        raise InvalidSourceError(message=f"Not a directory: {folder}")
    source = LocalSource(folder_name=root.name, root=root.as_posix())
    records = [rec for p in walk_folder(root, exclude_folders, file_types) if (rec := read_record(p, root)) is not None]
    if not records:
        raise NoMatchingFilesError(source=source.label)
    logger.info("local_folder_loaded", folder=str(root), files=len(records))
    return source, records


class FolderRegistry:
    """Remembered project folders, ``{project_id: folder}``, and GitHub sources.

    A project is bound to one of the two; remembering one drops the other.
    A folder that has been moved, deleted or made unreadable since it was
    remembered is purged on the next reopen attempt so it is not retried.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def _folders(self) -> dict[str, str]:
        return dict(self.store.get(FOLDER_REGISTRY_KEY) or {})

    def remember(self, project_id: str, folder: Path) -> None:
        folders = self._folders()
        folders[project_id] = str(folder.resolve())
        self.store.set(FOLDER_REGISTRY_KEY, folders)
        self._forget_source(project_id)

    def forget(self, project_id: str) -> None:
        folders = self._folders()
        if folders.pop(project_id, None) is not None:
            self.store.set(FOLDER_REGISTRY_KEY, folders)

    def get(self, project_id: str) -> Path | None:
        folder = self._folders().get(project_id)
        return Path(folder) if folder else None

    def remember_source(self, project_id: str, source: GitHubSource) -> None:
        sources = dict(self.store.get(SOURCE_REGISTRY_KEY) or {})
        sources[project_id] = source.model_dump(mode="json", exclude={"commit_date"})
        self.store.set(SOURCE_REGISTRY_KEY, sources)
        self.forget(project_id)

    def _forget_source(self, project_id: str) -> None:
        sources = dict(self.store.get(SOURCE_REGISTRY_KEY) or {})
        if sources.pop(project_id, None) is not None:
            self.store.set(SOURCE_REGISTRY_KEY, sources)

    def source_for(self, project_id: str) -> LocalSource | GitHubSource | None:
        """Return the remembered source of a project, or None.

        Records written by older versions (``{"type": "github", "repoInfo": ...}``)
        are accepted.

        Raises:
            InvalidSourceError: if the stored record is not a source
        """
        raw = (self.store.get(SOURCE_REGISTRY_KEY) or {}).get(project_id)
        return normalize_source(raw) if raw else None

    def reopen_folder(
        self,
        project_id: str,
        exclude_folders: Sequence[str] = (),
        file_types: Sequence[str] = (),
    ) -> tuple[LocalSource, list[FileRecord]]:
        """Load a remembered folder again.

        Raises:
            StaleHandleError: if nothing is remembered for ``project_id`` or
                the folder is no longer accessible; the entry is purged first
            NoMatchingFilesError: if the folder is readable but nothing is kept

        Returns:
            tuple[LocalSource, list[FileRecord]]: as ``load_local_folder``
        """
        folder = self.get(project_id)
        if folder is None:
            raise StaleHandleError(project_id=project_id)
        if not folder.is_dir() or not os.access(folder, os.R_OK | os.X_OK):
            self.forget(project_id)
            logger.warning("stale_folder_purged", project=project_id, folder=str(folder))
            raise StaleHandleError(project_id=project_id, folder=folder)
        return load_local_folder(folder, exclude_folders, file_types)
