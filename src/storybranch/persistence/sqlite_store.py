"""SQLite-backed story repository.

Stories and pages are stored as JSON documents (pydantic ``model_dump_json``)
with a few indexed columns for lookups. Choice-link updates and structure
version appends run inside an immediate transaction so concurrent writers
cannot interleave a read-modify-write of the same row. Pages are insert-only;
a second page with a taken ID is refused, never replaced.

The async methods run their statements directly on the event loop. Each one
is a short local write or lookup that completes without yielding, so within
one process every repository call is atomic with respect to other tasks.
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

from storybranch.engine.errors import EngineError, EngineErrorCode
from storybranch.models.page import Page
from storybranch.models.story import Story, add_structure_version
from storybranch.observability import get_logger
from storybranch.persistence.store import ChoiceLockRegistry, link_choice

if TYPE_CHECKING:
    from storybranch.models.structure import VersionedStoryStructure

log = get_logger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS stories (
    story_id   TEXT PRIMARY KEY,
    title      TEXT NOT NULL,
    data       JSON NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pages (
    story_id       TEXT NOT NULL REFERENCES stories(story_id) ON DELETE CASCADE,
    page_id        INTEGER NOT NULL,
    parent_page_id INTEGER,
    is_ending      INTEGER NOT NULL DEFAULT 0,
    data           JSON NOT NULL,
    PRIMARY KEY (story_id, page_id)
);
CREATE INDEX IF NOT EXISTS idx_pages_parent ON pages(story_id, parent_page_id);

CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

SCHEMA_VERSION = "1"


class SqliteStoryRepository:
    """SQLite implementation of :class:`StoryRepository`."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        """Open or create a story database.

        Args:
            db_path: Path to ``.db`` file, or ``":memory:"`` for in-memory.
        """
        self._db_path = str(db_path)
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            self._db_path,
            isolation_level=None,  # autocommit; transactions are explicit
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        self._conn.execute(
            "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
            (SCHEMA_VERSION,),
        )
        self._locks = ChoiceLockRegistry()

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # -- Stories ---------------------------------------------------------------

    async def load_story(self, story_id: str) -> Story | None:
        row = self._conn.execute(
            "SELECT data FROM stories WHERE story_id = ?", (story_id,)
        ).fetchone()
        return Story.model_validate_json(row["data"]) if row else None

    async def save_story(self, story: Story) -> None:
        self._conn.execute(
            """
            INSERT INTO stories (story_id, title, data, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(story_id) DO UPDATE SET
                title = excluded.title,
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (
                story.id,
                story.title,
                story.model_dump_json(),
                story.created_at.isoformat(),
                story.updated_at.isoformat(),
            ),
        )

    async def append_structure_version(
        self, story_id: str, version: VersionedStoryStructure
    ) -> Story:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            row = self._conn.execute(
                "SELECT data FROM stories WHERE story_id = ?", (story_id,)
            ).fetchone()
            if row is None:
                raise EngineError(f"Story {story_id} not found", EngineErrorCode.STORY_NOT_FOUND)
            updated = add_structure_version(Story.model_validate_json(row["data"]), version)
            self._conn.execute(
                "UPDATE stories SET data = ?, updated_at = ? WHERE story_id = ?",
                (updated.model_dump_json(), updated.updated_at.isoformat(), story_id),
            )
            self._conn.execute("COMMIT")
        except Exception:
            self._conn.execute("ROLLBACK")
            raise
        log.debug("structure_version_appended", story_id=story_id, version_id=version.id)
        return updated

    async def delete_story(self, story_id: str) -> None:
        self._conn.execute("DELETE FROM stories WHERE story_id = ?", (story_id,))
        self._locks.discard_story(story_id)

    async def list_stories(self) -> list[Story]:
        rows = self._conn.execute("SELECT data FROM stories ORDER BY created_at, story_id")
        return [Story.model_validate_json(row["data"]) for row in rows]

    # -- Pages -----------------------------------------------------------------

    async def load_page(self, story_id: str, page_id: int) -> Page | None:
        row = self._conn.execute(
            "SELECT data FROM pages WHERE story_id = ? AND page_id = ?",
            (story_id, page_id),
        ).fetchone()
        return Page.model_validate_json(row["data"]) if row else None

    async def save_page(self, story_id: str, page: Page) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO pages (story_id, page_id, parent_page_id, is_ending, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    story_id,
                    page.id,
                    page.parent_page_id,
                    int(page.is_ending),
                    page.model_dump_json(),
                ),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise EngineError(
                    f"Page {page.id} already exists in story {story_id}",
                    EngineErrorCode.PAGE_CONFLICT,
                ) from e
            raise EngineError(
                f"Story {story_id} not found", EngineErrorCode.STORY_NOT_FOUND
            ) from e

    async def load_all_pages(self, story_id: str) -> dict[int, Page]:
        rows = self._conn.execute(
            "SELECT page_id, data FROM pages WHERE story_id = ? ORDER BY page_id",
            (story_id,),
        )
        return {row["page_id"]: Page.model_validate_json(row["data"]) for row in rows}

    async def update_choice_link(
        self, story_id: str, page_id: int, choice_index: int, next_page_id: int
    ) -> None:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            row = self._conn.execute(
                "SELECT data FROM pages WHERE story_id = ? AND page_id = ?",
                (story_id, page_id),
            ).fetchone()
            if row is None:
                raise EngineError(
                    f"Page {page_id} not found in story {story_id}",
                    EngineErrorCode.PAGE_NOT_FOUND,
                )
            linked = link_choice(Page.model_validate_json(row["data"]), choice_index, next_page_id)
            self._conn.execute(
                "UPDATE pages SET data = ? WHERE story_id = ? AND page_id = ?",
                (linked.model_dump_json(), story_id, page_id),
            )
            self._conn.execute("COMMIT")
        except Exception:
            self._conn.execute("ROLLBACK")
            raise
        self._locks.discard_choice(story_id, page_id, choice_index)
        log.debug(
            "choice_linked",
            story_id=story_id,
            page_id=page_id,
            choice_index=choice_index,
            next_page_id=next_page_id,
        )

    async def get_max_page_id(self, story_id: str) -> int:
        row = self._conn.execute(
            "SELECT COALESCE(MAX(page_id), 0) AS max_id FROM pages WHERE story_id = ?",
            (story_id,),
        ).fetchone()
        return int(row["max_id"])

    def choice_lock(self, story_id: str, page_id: int, choice_index: int) -> asyncio.Lock:
        return self._locks.get(story_id, page_id, choice_index)

    def story_lock(self, story_id: str) -> asyncio.Lock:
        return self._locks.for_story(story_id)
