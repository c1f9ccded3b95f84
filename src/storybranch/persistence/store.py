"""Story repository protocol and in-memory implementation.

The StoryRepository protocol is the engine's only view of storage. It stores
whole stories and write-once pages. The in-place updates are choice links,
written as a copy of the page with the linked choice, and structure versions
appended to a stored story.

InMemoryStoryRepository keeps everything in dicts and is the default for
tests. SqliteStoryRepository (see :mod:`storybranch.persistence.sqlite_store`)
persists to a database file.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from storybranch.engine.errors import EngineError, EngineErrorCode
from storybranch.models.story import add_structure_version

if TYPE_CHECKING:
    from storybranch.models.page import Page
    from storybranch.models.story import Story
    from storybranch.models.structure import VersionedStoryStructure

ChoiceKey = tuple[str, int, int]


@runtime_checkable
class StoryRepository(Protocol):
    """Storage backend protocol for the story engine."""

    # -- Stories ---------------------------------------------------------------

    async def load_story(self, story_id: str) -> Story | None:
        """Get a story by ID, or None if not found."""
        ...

    async def save_story(self, story: Story) -> None:
        """Create or overwrite a story."""
        ...

    async def append_structure_version(
        self, story_id: str, version: VersionedStoryStructure
    ) -> Story:
        """Append *version* to the stored story in one step and return the result.

        Raises:
            EngineError: STORY_NOT_FOUND if the story does not exist.
        """
        ...

    async def delete_story(self, story_id: str) -> None:
        """Delete a story and all of its pages. Missing stories are ignored."""
        ...

    async def list_stories(self) -> list[Story]:
        """All stories, oldest first."""
        ...

    # -- Pages -----------------------------------------------------------------

    async def load_page(self, story_id: str, page_id: int) -> Page | None:
        """Get a page, or None if not found."""
        ...

    async def save_page(self, story_id: str, page: Page) -> None:
        """Store a new page.

        Raises:
            EngineError: STORY_NOT_FOUND if the story does not exist,
                PAGE_CONFLICT if the story already has a page with this ID.
        """
        ...

    async def load_all_pages(self, story_id: str) -> dict[int, Page]:
        """All pages of a story keyed by page ID."""
        ...

    async def update_choice_link(
        self, story_id: str, page_id: int, choice_index: int, next_page_id: int
    ) -> None:
        """Point one choice of a stored page at its child page.

        Once linked, the choice lock for that choice is no longer needed and is
        dropped from the registry.
        """
        ...

    async def get_max_page_id(self, story_id: str) -> int:
        """Highest page ID of the story, 0 if it has no pages."""
        ...

    # -- Concurrency -----------------------------------------------------------

    def choice_lock(self, story_id: str, page_id: int, choice_index: int) -> asyncio.Lock:
        """Lock guarding first-time generation for one (page, choice)."""
        ...

    def story_lock(self, story_id: str) -> asyncio.Lock:
        """Lock serializing page-ID allocation and story writes for one story."""
        ...


class ChoiceLockRegistry:
    """Per-choice and per-story asyncio locks shared by every engine using a repository."""

    def __init__(self) -> None:
        self._locks: dict[ChoiceKey, asyncio.Lock] = {}
        self._story_locks: dict[str, asyncio.Lock] = {}

    def get(self, story_id: str, page_id: int, choice_index: int) -> asyncio.Lock:
        key = (story_id, page_id, choice_index)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def for_story(self, story_id: str) -> asyncio.Lock:
        lock = self._story_locks.get(story_id)
        if lock is None:
            lock = self._story_locks[story_id] = asyncio.Lock()
        return lock

    def discard_choice(self, story_id: str, page_id: int, choice_index: int) -> None:
        self._locks.pop((story_id, page_id, choice_index), None)

    def discard_story(self, story_id: str) -> None:
        for key in [k for k in self._locks if k[0] == story_id]:
            del self._locks[key]
        self._story_locks.pop(story_id, None)


def link_choice(page: Page, choice_index: int, next_page_id: int) -> Page:
    """Copy of *page* with one choice linked.

    Raises:
        EngineError: If *choice_index* is out of range.
    """
    if not 0 <= choice_index < len(page.choices):
        raise EngineError(
            f"Invalid choice index {choice_index} on page {page.id}",
            EngineErrorCode.INVALID_CHOICE,
        )
    return page.with_choice_link(choice_index, next_page_id)


class InMemoryStoryRepository:
    """Dict-backed story repository."""

    def __init__(self) -> None:
        self._stories: dict[str, Story] = {}
        self._pages: dict[str, dict[int, Page]] = {}
        self._locks = ChoiceLockRegistry()

    async def load_story(self, story_id: str) -> Story | None:
        return self._stories.get(story_id)

    async def save_story(self, story: Story) -> None:
        self._stories[story.id] = story
        self._pages.setdefault(story.id, {})

    async def append_structure_version(
        self, story_id: str, version: VersionedStoryStructure
    ) -> Story:
        story = self._stories.get(story_id)
        if story is None:
            raise EngineError(f"Story {story_id} not found", EngineErrorCode.STORY_NOT_FOUND)
        updated = self._stories[story_id] = add_structure_version(story, version)
        return updated

    async def delete_story(self, story_id: str) -> None:
        self._stories.pop(story_id, None)
        self._pages.pop(story_id, None)
        self._locks.discard_story(story_id)

    async def list_stories(self) -> list[Story]:
        return sorted(self._stories.values(), key=lambda s: s.created_at)

    async def load_page(self, story_id: str, page_id: int) -> Page | None:
        return self._pages.get(story_id, {}).get(page_id)

    async def save_page(self, story_id: str, page: Page) -> None:
        if story_id not in self._stories:
            raise EngineError(f"Story {story_id} not found", EngineErrorCode.STORY_NOT_FOUND)
        pages = self._pages[story_id]
        if page.id in pages:
            raise EngineError(
                f"Page {page.id} already exists in story {story_id}",
                EngineErrorCode.PAGE_CONFLICT,
            )
        pages[page.id] = page

    async def load_all_pages(self, story_id: str) -> dict[int, Page]:
        return dict(self._pages.get(story_id, {}))

    async def update_choice_link(
        self, story_id: str, page_id: int, choice_index: int, next_page_id: int
    ) -> None:
        page = await self.load_page(story_id, page_id)
        if page is None:
            raise EngineError(
                f"Page {page_id} not found in story {story_id}",
                EngineErrorCode.PAGE_NOT_FOUND,
            )
        self._pages[story_id][page_id] = link_choice(page, choice_index, next_page_id)
        self._locks.discard_choice(story_id, page_id, choice_index)

    async def get_max_page_id(self, story_id: str) -> int:
        return max(self._pages.get(story_id, {}), default=0)

    def choice_lock(self, story_id: str, page_id: int, choice_index: int) -> asyncio.Lock:
        return self._locks.get(story_id, page_id, choice_index)

    def story_lock(self, story_id: str) -> asyncio.Lock:
        return self._locks.for_story(story_id)
