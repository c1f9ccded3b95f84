"""Structured logging for storybranch.

Events are emitted through structlog and routed into stdlib logging, where
two handlers can pick them up:

- a rich console handler on stderr, whose level follows ``-v``;
- a JSONL file handler at ``{data_dir}/logs/engine.jsonl``, enabled by the
  CLI's ``--log`` flag, that records everything at DEBUG.

Story identifiers bound with :func:`bound_story_context` are merged into
every event logged inside the block, so a rewrite or page-ID retry deep in
the engine still carries the story, page and choice that triggered it.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from collections.abc import Iterator

    from structlog.typing import Processor

LOG_FILENAME = "engine.jsonl"

_CONSOLE_LEVELS = {0: logging.WARNING, 1: logging.INFO}

_configured = False
_file_handler: logging.FileHandler | None = None


class JSONLFileHandler(logging.FileHandler):
    """Writes each record as one JSON object: event name plus its bound keys."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(_record_to_entry(record), default=str)
            if self.stream:
                self.stream.write(line + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


def _record_to_entry(record: logging.LogRecord) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
    }
    # structlog passes its event dict through as record.msg
    if not isinstance(record.msg, dict):
        entry["message"] = record.getMessage()
        return entry
    fields = {k: v for k, v in record.msg.items() if k not in ("level", "timestamp")}
    entry["message"] = fields.pop("event", "")
    entry.update(fields)
    return entry


def _console_handler(verbosity: int) -> RichHandler:
    return RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
        level=_CONSOLE_LEVELS.get(verbosity, logging.DEBUG),
    )


def _open_file_sink(data_dir: Path) -> JSONLFileHandler:
    logs_dir = data_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    handler = JSONLFileHandler(str(logs_dir / LOG_FILENAME), mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    return handler


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    data_dir: Path | None = None,
) -> None:
    """Configure console and optional file logging.

    Safe to call repeatedly; a previously opened log file is closed first.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG on the console.
        log_to_file: Also write JSONL events under ``{data_dir}/logs/``.
        data_dir: Directory of the story database. Required with log_to_file.

    Raises:
        ValueError: If log_to_file=True but data_dir is not provided.
    """
    global _configured, _file_handler

    if log_to_file and data_dir is None:
        raise ValueError("data_dir is required when log_to_file=True")

    close_file_logging()

    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    if log_to_file and data_dir is not None:
        _file_handler = _open_file_sink(data_dir)
        handlers.append(_file_handler)

    # The root logger stays open whenever any sink wants detail; handlers filter.
    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Structured logger for *name*, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


@contextmanager
def bound_story_context(**identifiers: Any) -> Iterator[None]:
    """Attach story identifiers to every event logged inside the block.

    Keys passed explicitly to a log call win over bound ones.
    """
    with structlog.contextvars.bound_contextvars(**identifiers):
        yield


def get_log_file() -> Path | None:
    """Path of the JSONL log file, or None when file logging is off."""
    if _file_handler is None:
        return None
    return Path(_file_handler.baseFilename)


def close_file_logging() -> None:
    """Flush and close the JSONL file handler, if one is open."""
    global _file_handler
    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None
