"""Token estimation for the current selection."""

from __future__ import annotations

import asyncio
import contextlib
import math
from typing import TYPE_CHECKING, Protocol

import tiktoken
from pydantic import BaseModel, ConfigDict, Field, computed_field

from context_bundler.config import CHARS_PER_TOKEN
from context_bundler.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from context_bundler.tree import FileNode

DEFAULT_ENCODING = "cl100k_base"
DEFAULT_DEBOUNCE_SECONDS = 0.05


class Tokenizer(Protocol):
    """Exact tokenizer strategy, injected at startup."""

    name: str

    def count(self, text: str) -> int: ...


class TiktokenTokenizer:
    """``tiktoken`` encoding wrapped as a ``Tokenizer``."""

    def __init__(self, encoding_name: str = DEFAULT_ENCODING) -> None:
        self._encoding = tiktoken.get_encoding(encoding_name)
        self.name = self._encoding.name

    def count(self, text: str) -> int:
        return len(self._encoding.encode(text, disallowed_special=()))


def load_tokenizer(encoding_name: str | None = DEFAULT_ENCODING) -> Tokenizer | None:
    """Pick the tokenizer strategy once, at startup.

    Args:
        encoding_name (str | None): tiktoken encoding name; None or "" disables
            exact counting

    Returns:
        Tokenizer | None: the tokenizer, or None when it cannot be loaded
            (estimation then falls back to the character heuristic)
    """
    if not encoding_name:
        return None
    try:
        return TiktokenTokenizer(encoding_name)
    except Exception as e:
        logger.warning("tokenizer_unavailable", encoding=encoding_name, error=str(e))
        return None


class TokenEstimate(BaseModel):
    """Total token estimate with an exact/estimated breakdown."""

    model_config = ConfigDict(frozen=True)

    exact_tokens: int = Field(default=0, ge=0)
    estimated_tokens: int = Field(default=0, ge=0)
    exact_files: int = Field(default=0, ge=0)
    estimated_files: int = Field(default=0, ge=0)

    @computed_field
    @property
    def total(self) -> int:
        return self.exact_tokens + self.estimated_tokens

    def over_budget(self, max_tokens: int) -> bool:
        return self.total > max_tokens


def heuristic_tokens(length: int | None) -> int:
    """``ceil(length / 4)``; missing or negative lengths count as 0."""
    if not length or length < 0:
        return 0
    return math.ceil(length / CHARS_PER_TOKEN)


def file_tokens(node: FileNode, tokenizer: Tokenizer | None) -> tuple[int, bool]:
    """Estimate one file.

    Cached content goes through the tokenizer when there is one, otherwise
    ``ceil(chars / 4)``. Unfetched content falls back to ``ceil(bytes / 4)``,
    which is only a stand-in until the content is hydrated.

    Returns:
        tuple[int, bool]: the token count and whether it is exact
    """
    if node.content is None:
        return heuristic_tokens(node.byte_size), False
    if tokenizer is not None:
        try:
            return tokenizer.count(node.content), True
        except Exception as e:
            logger.warning("tokenizer_failed", path=node.path, error=str(e))
    return heuristic_tokens(len(node.content)), False


def estimate_tokens(files: Iterable[FileNode], tokenizer: Tokenizer | None = None) -> TokenEstimate:
    """Estimate the tokens of a set of files. Never raises, never does I/O.

    Args:
        files (Iterable[FileNode]): the selected files
        tokenizer (Tokenizer | None): exact tokenizer, if available

    Returns:
        TokenEstimate: total and breakdown
    """
    exact_tokens = estimated_tokens = exact_files = estimated_files = 0
    for node in files:
        try:
            count, exact = file_tokens(node, tokenizer)
        except Exception as e:
            logger.warning("token_estimate_skipped", path=getattr(node, "path", None), error=str(e))
            continue
        if exact:
            exact_tokens += count
            exact_files += 1
        else:
            estimated_tokens += count
            estimated_files += 1
    return TokenEstimate(
        exact_tokens=exact_tokens,
        estimated_tokens=estimated_tokens,
        exact_files=exact_files,
        estimated_files=estimated_files,
    )


class DebouncedTokenEstimator:
    """Recompute the estimate a short delay after the last selection change.

    Each ``schedule`` call supersedes the pending one, so a burst of checkbox
    clicks triggers a single computation. ``files`` is read when the timer
    fires, so the latest selection is always used.
    """

    def __init__(
        self,
        tokenizer: Tokenizer | None,
        on_estimate: Callable[[TokenEstimate], None] | None = None,
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.tokenizer = tokenizer
        self.on_estimate = on_estimate
        self.delay = delay
        self.latest: TokenEstimate = TokenEstimate()
        self.runs = 0
        self._task: asyncio.Task[TokenEstimate] | None = None

    def schedule(self, files: Callable[[], Iterable[FileNode]]) -> None:
        """Start (or restart) the debounce timer. Needs a running event loop."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(files))

    async def _run(self, files: Callable[[], Iterable[FileNode]]) -> TokenEstimate:
        await asyncio.sleep(self.delay)
        estimate = estimate_tokens(files(), self.tokenizer)
        self.latest = estimate
        self.runs += 1
        if self.on_estimate is not None:
            self.on_estimate(estimate)
        return estimate

    async def flush(self) -> TokenEstimate:
        """Wait for the pending computation, if any, and return the latest estimate."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        return self.latest
