"""Test CLI commands."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from storybranch import __version__
from storybranch.cli import app
from storybranch.engine.story_engine import StoryEngine
from storybranch.observability import close_file_logging
from storybranch.persistence.sqlite_store import SqliteStoryRepository
from tests.fixtures.story_fixtures import ScriptedGenerator, make_result, three_act_plan

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()


async def _seed(db_path: Path) -> str:
    repository = SqliteStoryRepository(db_path)
    generator = ScriptedGenerator(
        opening=make_result(
            inventory_added=["Lantern"],
            current_location="Station platform",
            threads_added=[{"text": "Who wrote the letter?", "urgency": "HIGH"}],
        ),
        by_choice={"Walk away": make_result(is_ending=True, choices=[])},
    )
    engine = StoryEngine(repository, generator)
    try:
        started = await engine.start_story("Rain City", "A courier", structure=three_act_plan())
        await engine.make_choice(started.story.id, 1, 1)
    finally:
        repository.close()
    return started.story.id


@pytest.fixture
def seeded_db(tmp_path: Path) -> tuple[Path, str]:
    db_path = tmp_path / "stories.db"
    story_id = asyncio.run(_seed(db_path))
    return db_path, story_id


def _invoke(db_path: Path, *args: str):
    config_dir = db_path.parent
    return runner.invoke(app, ["--db", str(db_path), "--config", str(config_dir), *args])


def test_version_command() -> None:
    """Test sb version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"v{__version__}" in result.stdout


def test_no_args_shows_help() -> None:
    """no_args_is_help=True returns exit code 2."""
    result = runner.invoke(app, [])
    assert result.exit_code == 2
    assert "storybranch" in result.stdout


def test_stories_lists_titles(seeded_db: tuple[Path, str]) -> None:
    """Stored stories are listed by title."""
    db_path, _ = seeded_db
    result = _invoke(db_path, "stories")
    assert result.exit_code == 0
    assert "Rain City" in result.stdout


def test_stories_empty_database(tmp_path: Path) -> None:
    """An empty database says so instead of printing an empty table."""
    db_path = tmp_path / "empty.db"
    SqliteStoryRepository(db_path).close()

    result = _invoke(db_path, "stories")

    assert result.exit_code == 0
    assert "No stories found." in result.stdout


def test_missing_database(tmp_path: Path) -> None:
    """A missing database file exits with an error rather than creating one."""
    result = _invoke(tmp_path / "absent.db", "stories")
    assert result.exit_code == 1
    assert "Database not found" in result.stdout


def test_stats(seeded_db: tuple[Path, str]) -> None:
    """Test sb stats command."""
    db_path, story_id = seeded_db
    result = _invoke(db_path, "stats", story_id)

    assert result.exit_code == 0
    assert "Explored branches" in result.stdout
    assert "Ending reached" in result.stdout
    assert "yes" in result.stdout


def test_stats_unknown_story(seeded_db: tuple[Path, str]) -> None:
    """Unknown story IDs exit 1."""
    db_path, _ = seeded_db
    result = _invoke(db_path, "stats", "nope")
    assert result.exit_code == 1
    assert "Story nope not found" in result.stdout


def test_page_shows_choices_and_panels(seeded_db: tuple[Path, str]) -> None:
    """A page shows its position, choices with links, and accumulated state."""
    db_path, story_id = seeded_db
    result = _invoke(db_path, "page", story_id, "1")

    assert result.exit_code == 0
    assert "Act 1: Act 1 name" in result.stdout
    assert "Open the door" in result.stdout
    assert "unexplored" in result.stdout
    assert "-> page 2" in result.stdout
    assert "Station platform" in result.stdout
    assert "Lantern" in result.stdout
    assert "Who wrote the letter?" in result.stdout


def test_page_ending(seeded_db: tuple[Path, str]) -> None:
    """Ending pages are marked."""
    db_path, story_id = seeded_db
    result = _invoke(db_path, "page", story_id, "2")
    assert result.exit_code == 0
    assert "THE END" in result.stdout


def test_page_not_found(seeded_db: tuple[Path, str]) -> None:
    """Unknown page IDs exit 1."""
    db_path, story_id = seeded_db
    result = _invoke(db_path, "page", story_id, "99")
    assert result.exit_code == 1
    assert "Page 99 not found" in result.stdout


def test_invalid_config_file(seeded_db: tuple[Path, str]) -> None:
    """A malformed storybranch.yaml is reported, not raised."""
    db_path, _ = seeded_db
    (db_path.parent / "storybranch.yaml").write_text("- not a mapping\n")
    result = _invoke(db_path, "stories")
    assert result.exit_code == 1
    assert "Failed to load engine config" in result.stdout


def test_log_flag_writes_beside_database(seeded_db: tuple[Path, str]) -> None:
    """--log opens logs/engine.jsonl next to the database."""
    db_path, _ = seeded_db
    result = _invoke(db_path, "--log", "-vv", "stats", "nope")
    close_file_logging()

    log_file = db_path.parent / "logs" / "engine.jsonl"
    assert result.exit_code == 1
    assert "Logging to" in result.stdout
    assert log_file.exists()
    for line in log_file.read_text().splitlines():
        assert "message" in json.loads(line)


def test_without_log_flag_no_log_file(seeded_db: tuple[Path, str]) -> None:
    """File logging is opt-in."""
    db_path, _ = seeded_db
    result = _invoke(db_path, "stories")

    assert result.exit_code == 0
    assert not (db_path.parent / "logs").exists()
