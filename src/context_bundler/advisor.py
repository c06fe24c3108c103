"""Advisory file suggestions: parsing and validation against the tree."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Protocol

from context_bundler.exceptions import AdvisorySuggestionEmptyError, AdvisorySuggestionInvalidError
from context_bundler.logging import logger
from context_bundler.tree import split_path

if TYPE_CHECKING:
    from collections.abc import Iterable

    from context_bundler.tree import PathTree

_FENCE = re.compile(r"```(?:json)?\n?|\n?```")


class SuggestionAdvisor(Protocol):
    """Black-box adapter: plain-text project tree in, candidate paths out."""

    async def suggest(self, project_tree: str) -> list[str]: ...


def parse_suggestion_response(text: str) -> list[str]:
    """Parse a model reply that should be a JSON array of paths.

    Markdown code fences are stripped first. Anything that is not a list of
    strings yields an empty list.

    Args:
        text (str): raw reply

    Returns:
        list[str]: the suggested paths, possibly empty
    """
    cleaned = _FENCE.sub("", text or "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning("suggestion_unparsable", error=str(e))
        return []
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, str)]


def validate_suggestions(tree: PathTree, suggested: Iterable[str]) -> list[str]:
    """Keep only suggested paths that are files of ``tree``.

    Args:
        tree (PathTree): the current tree
        suggested (Iterable[str]): paths from the adapter

    Raises:
        AdvisorySuggestionEmptyError: if nothing was suggested
        AdvisorySuggestionInvalidError: if no suggested path exists

    Returns:
        list[str]: the valid paths, in suggestion order, without duplicates
    """
    raw = list(suggested)
    if not raw:
        raise AdvisorySuggestionEmptyError
    valid: list[str] = []
    rejected: list[str] = []
    for path in raw:
        parts = split_path(path.removeprefix("./"))
        normalized = "/".join(parts) if parts else ""
        if normalized in tree.file_paths:
            valid.append(normalized)
        else:
            rejected.append(path)
    if rejected:
        logger.info("suggestion_paths_rejected", count=len(rejected))
    if not valid:
        raise AdvisorySuggestionInvalidError(rejected=tuple(rejected))
    return list(dict.fromkeys(valid))
