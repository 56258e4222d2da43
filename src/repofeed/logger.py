"""
Logger configuration for the repofeed project.

This module integrates structlog with the standard logging module so the
CLI and the HTTP server share one pipeline, rendered either for a console
or as JSON lines for log shippers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import structlog
from structlog.stdlib import BoundLogger, ProcessorFormatter
from structlog.typing import Processor

_PRE_CHAIN: tuple[Processor, ...] = (
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
)


def _configure_structlog(min_level: int) -> None:
    """Bridge structlog into the standard logging framework."""
    structlog.configure(
        processors=_PRE_CHAIN + (ProcessorFormatter.wrap_for_formatter,),
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _build_formatter(renderer: Processor) -> ProcessorFormatter:
    return ProcessorFormatter(processor=renderer, foreign_pre_chain=_PRE_CHAIN)


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def configure_logging(
    level: int = logging.INFO,
    enable_console: bool = True,
    console_level: int | None = None,
    json_output: bool = False,
) -> None:
    """
    Configure global logging.

    Parameters
    ----------
    level:
        Base logging level for the root logger.
    enable_console:
        When False, suppress log emission to stderr.
    console_level:
        Severity threshold for messages emitted to stderr. Defaults to ``level``.
    json_output:
        Render records as JSON lines instead of the human console format.
    """
    _configure_structlog(level)
    logging.captureWarnings(True)

    handlers: list[logging.Handler] = []

    if enable_console:
        handler = logging.StreamHandler()
        handler.setLevel(console_level if console_level is not None else level)
        handler.setFormatter(_build_formatter(_renderer(json_output)))
        handlers.append(handler)
    else:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=level, handlers=handlers, force=True)


def level_from_name(name: str) -> int:
    """Translate a configured level name, defaulting to INFO."""
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else logging.INFO


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """Retrieve a structlog logger with the provided name."""
    return structlog.get_logger(name)


def redirect_logging_to_file(path: Path, level: int = logging.INFO) -> None:
    """Redirect standard logging output to the given file."""
    _configure_structlog(level)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(_build_formatter(structlog.dev.ConsoleRenderer(colors=False)))
    root.addHandler(handler)
    root.setLevel(level)
