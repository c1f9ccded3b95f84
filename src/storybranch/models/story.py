"""Story model and structure-version bookkeeping."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from storybranch.models.structure import StoryStructure, VersionedStoryStructure


def _now() -> datetime:
    return datetime.now(UTC)


class Story(BaseModel):
    """A story and the append-only history of its structure versions.

    When ``structure`` is set, ``structure_versions`` is non-empty and its last
    element holds that structure.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = Field(min_length=1)
    character_concept: str = Field(min_length=1)
    worldbuilding: str = ""
    tone: str = ""
    structure: StoryStructure | None = None
    structure_versions: list[VersionedStoryStructure] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    _version_index: dict[str, VersionedStoryStructure] | None = PrivateAttr(default=None)

    def version_index(self) -> dict[str, VersionedStoryStructure]:
        """Versions keyed by ID, built on first use."""
        if self._version_index is None:
            self._version_index = {v.id: v for v in self.structure_versions}
        return self._version_index

    def __eq__(self, other: object) -> bool:
        # the version index cache is not part of the value
        if not isinstance(other, Story):
            return NotImplemented
        return self.__dict__ == other.__dict__


def create_story(
    title: str,
    character_concept: str,
    worldbuilding: str = "",
    tone: str = "",
) -> Story:
    return Story(
        title=title.strip(),
        character_concept=character_concept.strip(),
        worldbuilding=worldbuilding.strip(),
        tone=tone.strip(),
    )


def add_structure_version(story: Story, version: VersionedStoryStructure) -> Story:
    """Return a copy of *story* with *version* appended and made current."""
    updated = story.model_copy(
        update={
            "structure": version.structure,
            "structure_versions": [*story.structure_versions, version],
            "updated_at": _now(),
        }
    )
    # model_copy carries private attributes over
    updated._version_index = None
    return updated


def get_latest_structure_version(story: Story) -> VersionedStoryStructure | None:
    if not story.structure_versions:
        return None
    return story.structure_versions[-1]


def get_structure_version(story: Story, version_id: str) -> VersionedStoryStructure | None:
    return story.version_index().get(version_id)
