"""
context_bundler: bundle a selection of project files for an LLM context window.

Overview
--------
Files come from a local folder (``--folder``) or a GitHub branch
(``--github owner/repo --branch main``). The tree is filtered with
``--exclude-folders`` and ``--file-types``, a selection is made (every file,
``--select`` globs, a saved ``--preset`` or a ``--suggestions`` file holding a
JSON list of paths), and one artifact is written:

- ``code``: project tree followed by every selected file (default),
- ``tree``: the tree of the selected files only,
- ``paths``: one selected path per line,
- ``markdown``: a summary with freshness, counts and the token estimate.

Usage
-----
    context-bundler --folder . --select "src/**" --output bundle.txt
    context-bundler --github octocat/hello-world --format markdown
    context-bundler --folder . --select "*.py" --save-preset py --preset-file presets.yaml
    context-bundler --project api --preset-file presets.yaml --preset py
    context-bundler --github octocat/hello-world --list-branches
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from context_bundler import __version__
from context_bundler.config import NoticeKind
from context_bundler.content import ContentResolver
from context_bundler.exceptions import ContextBundlerError, InvalidSourceError
from context_bundler.file_manipulation import FolderRegistry, paths_matching, split_csv
from context_bundler.github_source import GitHubContentFetcher, GitHubTreeAdapter, make_client, parse_repo_spec
from context_bundler.logging import logger, setup_logging
from context_bundler.output_construction import format_choices
from context_bundler.presets import InMemoryStore, NamedSelections, YamlStore
from context_bundler.settings import ENV_FILE, Settings
from context_bundler.sources import GitHubSource
from context_bundler.tokens import load_tokenizer
from context_bundler.workspace import Notice, Workspace

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_bundler.presets import KeyValueStore

EXIT_NOTICE = 1
EXIT_USAGE = 2

# Notices that leave nothing to export.
_BLOCKING_NOTICES = {
    NoticeKind.NO_MATCHING_FILES,
    NoticeKind.NO_FILES_SELECTED,
    NoticeKind.STALE_HANDLE,
    NoticeKind.ADVISORY_EMPTY,
    NoticeKind.ADVISORY_INVALID,
}


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    p = argparse.ArgumentParser(
        prog="context-bundler",
        description="Bundle selected project files, with a tree header, for an LLM context window.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    source = p.add_mutually_exclusive_group()
    source.add_argument("--folder", type=Path, default=None, help="Local folder to bundle.")
    source.add_argument("--github", type=str, default="", help="GitHub repository, owner/repo.")
    p.add_argument("--branch", type=str, default="", help="Branch (default branch when omitted).")
    p.add_argument("--list-branches", action="store_true", help="Print the repository branches and exit.")
    p.add_argument("--github-token", type=str, default=None, help="GitHub token (default: $GITHUB_TOKEN).")
    p.add_argument(
        "--project",
        type=str,
        default="",
        help="Project id; keys presets and remembers --folder or --github for later runs.",
    )

    p.add_argument("--output", type=Path, default=None, help="Output file (default: stdout).")
    p.add_argument(
        "--format",
        type=str,
        choices=format_choices(),
        default="code",
        help="Export format.",
    )
    p.add_argument("--minify", action="store_true", help="Minify file contents (lossy).")
    p.add_argument("--max-tokens", type=int, default=None, help="Token budget for the warning.")

    p.add_argument(
        "--select",
        action="append",
        default=[],
        help="Select files matching a glob (repeatable); everything when omitted.",
    )
    p.add_argument("--preset", type=str, default="", help="Apply a saved preset.")
    p.add_argument("--save-preset", type=str, default="", help="Save the selection as a preset.")
    p.add_argument("--preset-file", type=Path, default=None, help="YAML file storing presets.")
    p.add_argument(
        "--suggestions",
        type=Path,
        default=None,
        help="File with a JSON list of paths to select (e.g. a model reply).",
    )

    p.add_argument(
        "--exclude-folders",
        action="append",
        default=None,
        help="Comma list of excluded folder names; a directory whose name contains an entry is skipped (repeatable).",
    )
    p.add_argument(
        "--file-types",
        action="append",
        default=None,
        help="Comma list of allowed types, .ext or exact name; * for all (repeatable).",
    )

    p.add_argument("--encoding", type=str, default=None, help="tiktoken encoding.")
    p.add_argument("--no-tokenizer", action="store_true", help="Estimate tokens as chars/4.")
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default="",
        help="Log level (default: warning on stderr, info in --log-file).",
    )
    args = p.parse_args(argv)

    values = {k: v for k, v in vars(args).items() if v is not None}
    for key in ("exclude_folders", "file_types"):
        if key in values:
            values[key] = split_csv(values[key])
    return Settings(**values)


def report(notice: Notice) -> None:
    print(f"{notice.kind}: {notice.message}", file=sys.stderr)


def _store(settings: Settings) -> KeyValueStore:
    if settings.preset_file is not None:
        return YamlStore(settings.preset_file)
    return InMemoryStore()


def _github_target(settings: Settings, registry: FolderRegistry) -> tuple[str, str, str] | None:
    """Owner, repo and branch to load from GitHub; the branch may be empty."""
    if settings.github:
        owner, repo = parse_repo_spec(settings.github)
        return owner, repo, settings.branch
    if settings.folder is None and settings.project:
        remembered = registry.source_for(settings.project)
        if isinstance(remembered, GitHubSource):
            return remembered.owner, remembered.repo, settings.branch or remembered.branch
    return None


async def _list_branches(settings: Settings, target: tuple[str, str, str] | None) -> int:
    if target is None:
        raise InvalidSourceError(message="--list-branches needs --github or a project remembered from GitHub.")
    owner, repo, _ = target
    adapter = GitHubTreeAdapter(make_client(settings.github_token))
    for name in await adapter.list_branches(owner, repo):
        print(name)
    return 0


async def _load_source(
    settings: Settings,
    workspace: Workspace,
    registry: FolderRegistry,
    target: tuple[str, str, str] | None,
) -> list[Notice]:
    if target is not None:
        owner, repo, branch = target
        adapter = GitHubTreeAdapter(make_client(settings.github_token))
        branch = branch or await adapter.default_branch(owner, repo)
        notices = await workspace.open_github(
            adapter,
            owner,
            repo,
            branch,
            exclude_folders=settings.exclude_folders,
            file_types=settings.file_types,
        )
        if settings.project and not any(n.kind in _BLOCKING_NOTICES for n in notices):
            registry.remember_source(settings.project, GitHubSource(owner=owner, repo=repo, branch=branch))
        return notices
    if settings.folder is not None:
        notices = workspace.open_folder(settings.folder, settings.exclude_folders, settings.file_types)
        if settings.project and not notices:
            registry.remember(settings.project, settings.folder)
        return notices
    if settings.project:
        return workspace.reopen_project(registry, settings.project, settings.exclude_folders, settings.file_types)
    raise InvalidSourceError(message="Give --folder, --github, or a remembered --project.")


def _apply_selection(settings: Settings, workspace: Workspace) -> Notice | None:
    if settings.preset:
        workspace.apply_preset(settings.preset)
    elif settings.suggestions is not None:
        try:
            response = settings.suggestions.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("suggestions_unreadable", path=str(settings.suggestions), error=str(e))
            return Notice(kind=NoticeKind.ADVISORY_INVALID, message=f"Cannot read suggestions file: {e}")
        notice = workspace.apply_suggestion_response(response)
        if notice is not None:
            return notice
    elif settings.select:
        workspace.select_paths(paths_matching(sorted(workspace.tree.file_paths), settings.select))
    else:
        workspace.select_all()
    if settings.save_preset:
        workspace.save_preset(settings.save_preset)
    return None


async def run(settings: Settings) -> int:
    store = _store(settings)
    registry = FolderRegistry(store)
    target = _github_target(settings, registry)
    if settings.list_branches:
        return await _list_branches(settings, target)

    tokenizer = None if settings.no_tokenizer else load_tokenizer(settings.encoding)
    fetcher = None
    if target is not None:
        fetcher = GitHubContentFetcher(make_client(settings.github_token))
    workspace = Workspace(
        resolver=ContentResolver(fetcher),
        tokenizer=tokenizer,
        presets=NamedSelections(store, project_id=settings.project or None),
        max_tokens=settings.max_tokens,
    )

    notices = await _load_source(settings, workspace, registry, target)
    for notice in notices:
        report(notice)
    if any(n.kind in _BLOCKING_NOTICES for n in notices):
        return EXIT_NOTICE

    notice = _apply_selection(settings, workspace)
    if notice is not None:
        report(notice)
        return EXIT_NOTICE

    outcome = await workspace.export(settings.format, minify=settings.minify)
    if outcome.notice is not None:
        report(outcome.notice)
        return EXIT_NOTICE

    if settings.output is not None:
        settings.output.write_text(outcome.text or "", encoding="utf-8")
        target = str(settings.output)
    else:
        sys.stdout.write(outcome.text or "")
        target = "stdout"

    estimate = workspace.estimate()
    print(
        f"Wrote {target} format={settings.format} files={len(workspace.selection)}"
        f" lines={workspace.selection.total_lines} tokens={estimate.total}/{settings.max_tokens}",
        file=sys.stderr,
    )
    if estimate.over_budget(settings.max_tokens):
        print(f"Warning: estimated tokens exceed the budget of {settings.max_tokens}.", file=sys.stderr)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    if ENV_FILE:
        load_dotenv(ENV_FILE)
    settings = parse_args(argv)
    if settings.log_file or settings.log_level:
        setup_logging(settings.log_file or None, level=settings.log_level or None, force=True)

    try:
        return asyncio.run(run(settings))
    except InvalidSourceError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except ContextBundlerError as e:
        logger.warning("command_failed", error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return EXIT_NOTICE


if __name__ == "__main__":
    raise SystemExit(main())
