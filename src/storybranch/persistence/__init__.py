"""Story repositories: protocol, in-memory and SQLite implementations."""

from storybranch.persistence.sqlite_store import SqliteStoryRepository
from storybranch.persistence.store import (
    ChoiceLockRegistry,
    InMemoryStoryRepository,
    StoryRepository,
    link_choice,
)

__all__ = [
    "ChoiceLockRegistry",
    "InMemoryStoryRepository",
    "SqliteStoryRepository",
    "StoryRepository",
    "link_choice",
]
