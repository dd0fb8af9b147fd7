"""Logging helpers for :mod:`plugscan`.

Every module logs through :func:`get_logger` with kebab-case event names and
key/value context. :func:`configure_logging` routes those events to a Rich
console on stderr and, optionally, to a JSON file that rotates nightly.
"""

from __future__ import annotations

from contextlib import contextmanager
import gzip
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import shutil
from typing import Any, Iterator

from rich.console import Console
from rich.logging import RichHandler
import structlog

Logger = structlog.stdlib.BoundLogger

LOG_FILENAME = "plugscan.log"
_BACKUP_DAYS = 7


def _level_number(level: str) -> int:
    """Translate a level name such as ``"warning"`` into its numeric value.

    Raises:
        ValueError: If the level name is not recognized.
    """

    try:
        return logging.getLevelNamesMapping()[level.strip().upper()]
    except KeyError:
        raise ValueError(f"Unsupported log level: {level!r}") from None


def _shared_processors() -> list[Any]:
    """Processors applied to structlog and stdlib records alike."""

    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


class CompressingFileHandler(TimedRotatingFileHandler):
    """JSON scan log rotated at midnight UTC; rotated files are gzipped."""

    def __init__(self, filename: Path, level: int) -> None:
        super().__init__(
            filename,
            when="midnight",
            backupCount=_BACKUP_DAYS,
            utc=True,
            encoding="utf-8",
            delay=True,
        )
        self.suffix = "%Y-%m-%d"
        self.setLevel(level)
        self.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(sort_keys=True),
                foreign_pre_chain=_shared_processors(),
            )
        )

    def rotation_filename(self, default_name: str) -> str:
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        if not Path(source).exists():
            return
        with open(source, "rb") as plain, gzip.open(dest, "wb") as packed:
            shutil.copyfileobj(plain, packed)
        Path(source).unlink(missing_ok=True)


def _console_handler(level: int, console: Console | None) -> RichHandler:
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        log_time_format="%H:%M:%S",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=_shared_processors(),
        )
    )
    return handler


def configure_logging(
    *,
    level: str = "INFO",
    log_dir: str | Path | None = None,
    console: Console | None = None,
) -> None:
    """Configure structlog on top of stdlib logging.

    Scan diagnostics (unreadable archives, unresolvable candidates) are
    warnings, so ``WARNING`` keeps the console quiet while still surfacing
    every absorbed failure. Calling this again replaces earlier handlers.

    Args:
        level: Root log level name (case-insensitive).
        log_dir: Optional directory receiving ``plugscan.log`` as JSON lines.
        console: Optional Rich console override, primarily for testing.

    Raises:
        ValueError: If ``level`` is not a recognized log level name.

    Example:
        >>> configure_logging(level="warning")
        >>> get_logger(__name__).warning("configured", example=True)  # doctest: +SKIP
    """

    threshold = _level_number(level)

    handlers: list[logging.Handler] = [_console_handler(threshold, console)]
    if log_dir is not None:
        directory = Path(log_dir).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        handlers.append(CompressingFileHandler(directory / LOG_FILENAME, threshold))

    structlog.reset_defaults()
    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    for previous in list(root.handlers):
        root.removeHandler(previous)
        previous.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(threshold)
    logging.captureWarnings(True)


def get_logger(name: str | None = None, **initial_context: Any) -> Logger:
    """Return a structured logger bound to an optional context.

    Example:
        >>> logger = get_logger(__name__, package="acme.plugins")
        >>> isinstance(logger, object)
        True
    """

    return structlog.get_logger(name).bind(**initial_context)


@contextmanager
def scan_context(**values: Any) -> Iterator[None]:
    """Attach ``values`` to every event logged inside the block.

    The values live in :mod:`contextvars`, so work handed to a thread pool
    only sees them when submitted through a copied context.
    """

    with structlog.contextvars.bound_contextvars(**values):
        yield


__all__ = [
    "LOG_FILENAME",
    "CompressingFileHandler",
    "Logger",
    "configure_logging",
    "get_logger",
    "scan_context",
]
