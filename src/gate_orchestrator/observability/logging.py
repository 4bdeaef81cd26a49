"""Structured logging setup for gate-orchestrator.

Log events go to stderr so stdout stays reserved for reports and JSON payloads.
Two renderers are supported: a human console renderer and JSON lines.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from typing import Any, Final, TextIO

import structlog

LOG_FORMAT_CONSOLE: Final[str] = "console"
LOG_FORMAT_JSON: Final[str] = "json"
_DEFAULT_LEVEL: Final[str] = "WARNING"


def resolve_level(level: int | str) -> int:
    """Translate ``"INFO"``/``20`` style levels to the stdlib integer."""

    if isinstance(level, int):
        return level
    mapping = logging.getLevelNamesMapping()
    resolved = mapping.get(level.strip().upper())
    if resolved is None:
        raise ValueError(f"unknown log level: {level!r}")
    return resolved


def configure_logging(
    level: int | str = _DEFAULT_LEVEL,
    fmt: str = LOG_FORMAT_CONSOLE,
    *,
    stream: TextIO | None = None,
    colors: bool = False,
) -> None:
    """Configure structlog globally.

    ``cache_logger_on_first_use`` stays off so repeated configuration (tests, repeated
    CLI invocations in one process) takes effect for module-level loggers.
    """

    if fmt not in (LOG_FORMAT_CONSOLE, LOG_FORMAT_JSON):
        raise ValueError(f"unknown log format: {fmt!r}")

    renderer: Any
    if fmt == LOG_FORMAT_JSON:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=colors)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_level(level)),
        logger_factory=structlog.PrintLoggerFactory(
            file=stream if stream is not None else sys.stderr
        ),
        cache_logger_on_first_use=False,
    )


def configure_from_config(
    config: Mapping[str, Any],
    *,
    verbose: bool = False,
    stream: TextIO | None = None,
    colors: bool = False,
) -> None:
    """Apply the ``[logging]`` section; ``verbose`` lowers the level to INFO at most."""

    section = config.get("logging", {})
    level = resolve_level(str(section.get("level", _DEFAULT_LEVEL)))
    if verbose:
        level = min(level, logging.INFO)
    configure_logging(
        level,
        str(section.get("format", LOG_FORMAT_CONSOLE)),
        stream=stream,
        colors=colors,
    )


__all__ = [
    "LOG_FORMAT_CONSOLE",
    "LOG_FORMAT_JSON",
    "configure_from_config",
    "configure_logging",
    "resolve_level",
]
