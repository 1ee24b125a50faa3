"""structlog loggers for the service and its components.

Loggers are built with ``structlog.wrap_logger`` and never touch the global
structlog configuration, so tests and embedded servers can each hold their
own.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from os import getenv
from pathlib import Path
from typing import TYPE_CHECKING, Literal, cast

import structlog

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger, Processor

LogFormatType = Literal["json", "text"]

DEBUG_ENV_VAR = "PROXYFLEET_DEBUG"
LEVEL_ENV_VAR = "PROXYFLEET_LOG_LEVEL"


def resolve_level(configured: str | None = None) -> int:
    """Return the effective log level.

    PROXYFLEET_DEBUG forces DEBUG. Otherwise `configured` wins over
    PROXYFLEET_LOG_LEVEL. Unknown names resolve to INFO.
    """
    if getenv(DEBUG_ENV_VAR):
        return logging.DEBUG
    name = configured or getenv(LEVEL_ENV_VAR) or "info"
    return logging.getLevelNamesMapping().get(name.upper(), logging.INFO)


def _rotating_logger(path: Path, level: int, max_bytes: int, backup_count: int) -> logging.Logger:
    stdlib_logger = logging.getLogger(f"proxyfleet.file:{path}")
    for old in stdlib_logger.handlers:
        old.close()
    stdlib_logger.handlers.clear()
    stdlib_logger.propagate = False
    stdlib_logger.setLevel(level)

    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    handler.setLevel(level)
    # Lines arrive fully rendered
    handler.setFormatter(logging.Formatter("%(message)s"))
    stdlib_logger.addHandler(handler)
    return stdlib_logger


def _sink(
    log_file: str, level: int, max_bytes: int | None, backup_count: int | None
) -> object:
    if not log_file:
        return structlog.PrintLogger(file=sys.stderr)

    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    if max_bytes and backup_count:
        return _rotating_logger(path, level, max_bytes, backup_count)
    return structlog.WriteLogger(file=path.open("a", encoding="utf-8"))


def _processors(log_format: LogFormatType) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if log_format == "json":
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    return processors


def create_logger(
    *,
    level: str | None = None,
    log_format: LogFormatType = "json",
    log_file: str = "",
    max_bytes: int | None = None,
    backup_count: int | None = None,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create a standalone service logger.

    Args:
        level: Threshold name (debug, info, warning, error). See resolve_level.
        log_format: "json" for one object per line, "text" for key=value lines.
        log_file: File appended to. Lines go to stderr when empty.
        max_bytes: Rotate the file at this size. Needs `backup_count`.
        backup_count: Rotated files kept. Needs `max_bytes`.

    Returns:
        A filtering bound logger.
    """
    effective = resolve_level(level)
    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            _sink(log_file, effective, max_bytes, backup_count),
            processors=_processors(log_format),
            wrapper_class=structlog.make_filtering_bound_logger(effective),
            context_class=dict,
        ),
    )


def get_logger(component: str) -> "FilteringBoundLogger":  # noqa: UP037
    """Return a stderr text logger bound to ``component``.

    Components fall back to this when constructed without a logger.
    """
    return create_logger(log_format="text").bind(component=component)
