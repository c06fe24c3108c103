from __future__ import annotations

import pytest

from context_bundler.config import FileRecord, SourceKind
from context_bundler.search import expand_for, search_tree
from context_bundler.tree import PathTree, build_tree


def _tree() -> PathTree:
    return build_tree(
        [
            FileRecord(path="a/b/c.ts", content="export const C = 1;"),
            FileRecord(path="a/d.ts", content="import { needle } from './x';"),
            FileRecord(path="lib/remote.py", byte_size=40),
            FileRecord(path="Docs/Guide.md", content="nothing"),
        ],
        SourceKind.LOCAL,
    )


@pytest.mark.unit
def test_search_includes_ancestors_and_expands_them() -> None:
    result = search_tree(_tree().roots, "c.ts")

    assert result.matches == {"a", "a/b", "a/b/c.ts"}
    assert result.expand == {"a", "a/b"}
    assert expand_for(result, set()) >= {"a", "a/b"}


@pytest.mark.unit
def test_search_is_case_insensitive_and_looks_at_cached_content() -> None:
    tree = _tree()

    assert search_tree(tree.roots, "NEEDLE").matches == {"a", "a/d.ts"}
    assert search_tree(tree.roots, "guide").matches == {"Docs", "Docs/Guide.md"}


@pytest.mark.unit
def test_directory_name_match_is_included_without_descendants() -> None:
    result = search_tree(_tree().roots, "lib")

    assert result.matches == {"lib"}
    assert result.expand == frozenset()


@pytest.mark.unit
def test_unfetched_content_is_not_searched() -> None:
    assert search_tree(_tree().roots, "remote").matches == {"lib", "lib/remote.py"}
    assert search_tree(_tree().roots, "import os").matches == frozenset()


@pytest.mark.unit
def test_blank_query_clears_filtering_and_keeps_expansion() -> None:
    result = search_tree(_tree().roots, "   ")

    assert result.matches is None
    assert not result.active
    assert result.is_visible("anything")
    assert expand_for(result, {"lib"}) == {"lib"}


@pytest.mark.unit
def test_expansion_is_a_union() -> None:
    result = search_tree(_tree().roots, "c.ts")

    assert expand_for(result, {"Docs"}) == {"Docs", "a", "a/b"}
