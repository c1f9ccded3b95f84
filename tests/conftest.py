"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from storybranch.engine.structure_state import create_story_structure
from storybranch.models.structure import StoryStructure
from storybranch.persistence.store import InMemoryStoryRepository
from tests.fixtures.story_fixtures import ScriptedGenerator, three_act_plan


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def structure() -> StoryStructure:
    """Three acts with two beats each, IDs assigned."""
    return create_story_structure(three_act_plan())


@pytest.fixture
def repository() -> InMemoryStoryRepository:
    return InMemoryStoryRepository()


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def events(caplog: pytest.LogCaptureFixture) -> Callable[[str], list[dict[str, Any]]]:
    """Look up captured structlog events by name.

    structlog hands its event dict to stdlib logging as ``record.msg``.
    """

    def _lookup(name: str) -> list[dict[str, Any]]:
        return [
            record.msg
            for record in caplog.records
            if isinstance(record.msg, dict) and record.msg.get("event") == name
        ]

    return _lookup
