"""Engine configuration loading.

Configuration lives in ``storybranch.yaml``. Every section is optional; a
missing file yields defaults. Environment variables override the file:

- ``SB_DB``: path of the SQLite story database.
- ``SB_PROMISE_AGING_NOTICE_PAGES``: promise aging threshold.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from storybranch.models.state import Urgency

CONFIG_FILENAME = "storybranch.yaml"
DEFAULT_DATABASE = "storybranch.db"


@dataclass
class ThreadPacingConfig:
    """Pages an open thread may stay open before it counts as overdue.

    Attributes:
        high_urgency_overdue_pages: Threshold for HIGH urgency threads.
        medium_urgency_overdue_pages: Threshold for MEDIUM urgency threads.
        low_urgency_overdue_pages: Threshold for LOW urgency threads.
        promise_aging_notice_pages: Age at which a tracked promise is surfaced
            to the generator as aging.
    """

    high_urgency_overdue_pages: int = 4
    medium_urgency_overdue_pages: int = 7
    low_urgency_overdue_pages: int = 10
    promise_aging_notice_pages: int = 3

    def threshold_for(self, urgency: Urgency | str) -> int:
        match Urgency(urgency):
            case Urgency.HIGH:
                return self.high_urgency_overdue_pages
            case Urgency.MEDIUM:
                return self.medium_urgency_overdue_pages
            case Urgency.LOW:
                return self.low_urgency_overdue_pages

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ThreadPacingConfig:
        defaults = cls()
        return cls(
            high_urgency_overdue_pages=_positive_int(
                data, "high_urgency_overdue_pages", defaults.high_urgency_overdue_pages
            ),
            medium_urgency_overdue_pages=_positive_int(
                data, "medium_urgency_overdue_pages", defaults.medium_urgency_overdue_pages
            ),
            low_urgency_overdue_pages=_positive_int(
                data, "low_urgency_overdue_pages", defaults.low_urgency_overdue_pages
            ),
            promise_aging_notice_pages=_positive_int(
                data, "promise_aging_notice_pages", defaults.promise_aging_notice_pages
            ),
        )


@dataclass
class ViewConfig:
    """Row caps for the presentation panels."""

    open_thread_panel_limit: int = 6
    keyed_entry_panel_limit: int = 6

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ViewConfig:
        return cls(
            open_thread_panel_limit=_positive_int(data, "open_thread_panel_limit", 6),
            keyed_entry_panel_limit=_positive_int(data, "keyed_entry_panel_limit", 6),
        )


@dataclass
class EngineConfig:
    """Top-level engine configuration."""

    thread_pacing: ThreadPacingConfig = field(default_factory=ThreadPacingConfig)
    views: ViewConfig = field(default_factory=ViewConfig)
    database: str = DEFAULT_DATABASE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        database = data.get("database", DEFAULT_DATABASE)
        if not isinstance(database, str) or not database.strip():
            raise ValueError("database must be a non-empty string")
        return cls(
            thread_pacing=ThreadPacingConfig.from_dict(dict(data.get("thread_pacing") or {})),
            views=ViewConfig.from_dict(dict(data.get("views") or {})),
            database=database,
        )


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    return _require_positive_int(key, data.get(key, default))


def _require_positive_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")
    return value


class EngineConfigError(Exception):
    """Raised when engine configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load engine config at {path}: {reason}")


def _apply_env_overrides(config: EngineConfig, config_path: Path) -> EngineConfig:
    if db := os.getenv("SB_DB"):
        config.database = db
    if notice := os.getenv("SB_PROMISE_AGING_NOTICE_PAGES"):
        try:
            pages = _require_positive_int("SB_PROMISE_AGING_NOTICE_PAGES", int(notice))
        except ValueError as e:
            raise EngineConfigError(
                config_path,
                f"SB_PROMISE_AGING_NOTICE_PAGES must be a positive integer, got {notice!r}",
            ) from e
        config.thread_pacing.promise_aging_notice_pages = pages
    return config


def load_engine_config(path: Path) -> EngineConfig:
    """Load configuration from *path*.

    Args:
        path: A ``storybranch.yaml`` file, or a directory containing one.

    Returns:
        EngineConfig, with defaults when the file does not exist.

    Raises:
        EngineConfigError: If the file exists but cannot be parsed or is invalid,
            or an environment override is invalid.
    """
    config_path = path / CONFIG_FILENAME if path.is_dir() else path

    if not config_path.exists():
        return _apply_env_overrides(EngineConfig(), config_path)

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            return _apply_env_overrides(EngineConfig(), config_path)
        if not isinstance(data, dict):
            raise EngineConfigError(config_path, "Top level must be a mapping")

        config = EngineConfig.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, EngineConfigError):
            raise
        raise EngineConfigError(config_path, str(e)) from e

    return _apply_env_overrides(config, config_path)
