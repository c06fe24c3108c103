from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

LOGGER_NAME = "context_bundler"

# stderr also carries the CLI's notices and status line; keep it quiet there.
STDERR_LEVEL = logging.WARNING
FILE_LEVEL = logging.INFO

_LOGGING_CONFIGURED = False


def resolve_level(level: int | str | None, filename: str | Path | None) -> int:
    """Turn a level name or number into a stdlib level; None picks the sink default.

    Raises:
        ValueError: if ``level`` is not a known level name
    """
    if level is None or level == "":
        return FILE_LEVEL if filename else STDERR_LEVEL
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        msg = f"Unknown log level: {level!r}"
        raise ValueError(msg)
    return value


def setup_logging(
    filename: str | Path | None = None,
    *,
    level: int | str | None = None,
    force: bool = False,
) -> structlog.BoundLogger:
    """Route the package's JSON event log to stderr or to a file.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.
        level: Level name or number; WARNING on stderr and INFO in a file by default.
        force: Reconfigure even if logging was already set up (the CLI does this
            once its options are parsed).

    Returns:
        The ``context_bundler`` structlog logger.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if _LOGGING_CONFIGURED and not force:
        return structlog.get_logger(LOGGER_NAME)

    threshold = resolve_level(level, filename)
    handler: logging.Handler = (
        logging.FileHandler(str(filename), encoding="utf-8") if filename else logging.StreamHandler(sys.stderr)
    )
    logging.basicConfig(level=threshold, handlers=[handler], format="%(message)s", force=force)
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _LOGGING_CONFIGURED = True
    return structlog.get_logger(LOGGER_NAME)


logger = setup_logging()
