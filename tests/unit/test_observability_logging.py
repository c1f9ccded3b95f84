"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

from storybranch.observability import (
    bound_story_context,
    close_file_logging,
    configure_logging,
    get_log_file,
    get_logger,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_configure_logging_sets_level_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.WARNING


def test_configure_logging_verbose_sets_debug_root() -> None:
    """verbosity=1 opens the root logger; the console handler filters."""
    configure_logging(verbosity=1)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG


def test_get_logger_returns_bound_logger() -> None:
    """get_logger returns a structlog logger with expected methods."""
    logger = get_logger(__name__)

    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")


def test_get_logger_auto_configures() -> None:
    """get_logger configures logging if not already done."""
    import storybranch.observability.logging as log_module

    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert logger is not None


def test_configure_logging_quiets_asyncio() -> None:
    """asyncio debug chatter stays out of verbose output."""
    configure_logging(verbosity=2)

    assert logging.getLogger("asyncio").level == logging.WARNING


def test_file_logging_creates_logs_dir(tmp_path: Path) -> None:
    """File logging writes under {data_dir}/logs."""
    configure_logging(verbosity=0, log_to_file=True, data_dir=tmp_path)
    close_file_logging()

    assert (tmp_path / "logs").exists()


def test_without_file_logging_no_logs_dir(tmp_path: Path) -> None:
    """No directory is created unless file logging is on."""
    configure_logging(verbosity=0, log_to_file=False, data_dir=tmp_path)

    assert not (tmp_path / "logs").exists()


def test_file_logging_requires_data_dir() -> None:
    """log_to_file=True without data_dir raises ValueError."""
    with pytest.raises(ValueError, match="data_dir is required"):
        configure_logging(verbosity=0, log_to_file=True, data_dir=None)


def test_reconfiguration_closes_handler(tmp_path: Path) -> None:
    """Reconfiguring logging closes the previous file handler."""
    import storybranch.observability.logging as log_module

    configure_logging(verbosity=0, log_to_file=True, data_dir=tmp_path)
    first_handler = log_module._file_handler
    assert first_handler is not None

    configure_logging(verbosity=0, log_to_file=True, data_dir=tmp_path)

    assert first_handler.stream is None or first_handler.stream.closed
    assert log_module._file_handler is not None
    close_file_logging()
    assert log_module._file_handler is None


def test_jsonl_file_handler_writes_structlog_context(tmp_path: Path) -> None:
    """Event name and bound keys land as top-level JSON fields."""
    configure_logging(verbosity=2, log_to_file=True, data_dir=tmp_path)

    logger = get_logger("test.context")
    logger.warning("page_generated", story_id="s-1", page_id=2)

    close_file_logging()

    log_file = tmp_path / "logs" / "engine.jsonl"
    assert log_file.exists()

    entries = [json.loads(line) for line in log_file.read_text().splitlines()]
    entry = next(e for e in entries if e.get("message") == "page_generated")
    assert entry["story_id"] == "s-1"
    assert entry["page_id"] == 2
    assert entry["level"] == "WARNING"


def test_get_log_file_follows_file_sink(tmp_path: Path) -> None:
    """The log file path is reported only while the file sink is open."""
    configure_logging(verbosity=0)
    assert get_log_file() is None

    configure_logging(verbosity=0, log_to_file=True, data_dir=tmp_path)
    assert get_log_file() == tmp_path / "logs" / "engine.jsonl"

    close_file_logging()
    assert get_log_file() is None


def test_bound_story_context_reaches_file(tmp_path: Path) -> None:
    """Bound identifiers ride along on events inside the block, and only there."""
    configure_logging(verbosity=0, log_to_file=True, data_dir=tmp_path)
    logger = get_logger("test.bound")

    with bound_story_context(story_id="s-7", parent_page_id=3):
        logger.warning("deviation_unhandled")
        logger.warning("page_id_conflict", story_id="s-override")
    logger.warning("after_block")

    close_file_logging()

    lines = (tmp_path / "logs" / "engine.jsonl").read_text().splitlines()
    entries = {entry["message"]: entry for entry in map(json.loads, lines)}
    assert entries["deviation_unhandled"]["story_id"] == "s-7"
    assert entries["deviation_unhandled"]["parent_page_id"] == 3
    assert entries["page_id_conflict"]["story_id"] == "s-override"
    assert entries["page_id_conflict"]["parent_page_id"] == 3
    assert "story_id" not in entries["after_block"]
