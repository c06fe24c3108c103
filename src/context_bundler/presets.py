"""Named selections (presets) and the key-value stores that persist them."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import yaml

from context_bundler.config import GLOBAL_PRESET_KEY
from context_bundler.exceptions import PresetNotFoundError
from context_bundler.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from context_bundler.selection import Selection


class KeyValueStore(Protocol):
    """Get/set persistence; no transactions are expected."""

    def get(self, key: str, default: Any = None) -> Any: ...  # noqa: ANN401

    def set(self, key: str, value: Any) -> None: ...  # noqa: ANN401

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    """Dict-backed store, used when nothing should touch the disk."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(data or {})

    def get(self, key: str, default: Any = None) -> Any:  # noqa: ANN401
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:  # noqa: ANN401
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class YamlStore:
    """Store backed by a single YAML mapping on disk.

    The file is re-read on every ``get`` and rewritten on every ``set`` so
    that several processes see each other's last write.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            logger.warning("store_not_a_mapping", path=str(self.path))
            return {}
        return data

    def _dump(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(yaml.safe_dump(data, sort_keys=True, allow_unicode=True), encoding="utf-8")

    def get(self, key: str, default: Any = None) -> Any:  # noqa: ANN401
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:  # noqa: ANN401
        data = self._load()
        data[key] = value
        self._dump(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)


class NamedSelections:
    """Presets of one project: ``{name: [path, ...]}``.

    Presets live independently of the tree and may reference files that no
    longer exist; those are dropped when a preset is applied.

    Args:
        store: persistence adapter
        project_id: project key, or None for the global default key
    """

    def __init__(self, store: KeyValueStore, project_id: str | None = None) -> None:
        self.store = store
        self.key = project_id or GLOBAL_PRESET_KEY

    def all(self) -> dict[str, list[str]]:
        raw = self.store.get(self.key) or {}
        return {str(name): [str(p) for p in paths or []] for name, paths in raw.items()}

    def names(self) -> list[str]:
        return sorted(self.all(), key=str.lower)

    def save(self, name: str, paths: Sequence[str]) -> None:
        """Save (or overwrite) a preset, keeping the given order without duplicates."""
        presets = self.all()
        presets[name] = list(dict.fromkeys(paths))
        self.store.set(self.key, presets)
        logger.info("preset_saved", project=self.key, preset=name, files=len(presets[name]))

    def rename(self, old: str, new: str) -> bool:
        """Rename a preset; refuses when ``old`` is missing or ``new`` is taken."""
        presets = self.all()
        if old not in presets or new in presets or not new:
            return False
        presets = {new if k == old else k: v for k, v in presets.items()}
        self.store.set(self.key, presets)
        return True

    def delete(self, name: str) -> bool:
        presets = self.all()
        if presets.pop(name, None) is None:
            return False
        self.store.set(self.key, presets)
        return True

    def apply(self, name: str, selection: Selection) -> Selection:
        """Replace the selection with a preset's paths that exist in the tree.

        Raises:
            PresetNotFoundError: if no preset has this name

        Returns:
            Selection: the new selection
        """
        presets = self.all()
        if name not in presets:
            raise PresetNotFoundError(name=name)
        wanted = presets[name]
        applied = selection.replace_with(wanted)
        stale = len(set(wanted)) - len(applied)
        if stale:
            logger.info("preset_stale_paths_dropped", preset=name, dropped=stale)
        return applied
