"""Consistency gates between a story's structure versions and its pages."""

from __future__ import annotations

from storybranch.engine.errors import StructureVersionInconsistency
from storybranch.models.page import Page
from storybranch.models.story import (
    Story,
    get_latest_structure_version,
    get_structure_version,
)
from storybranch.models.structure import VersionedStoryStructure
from storybranch.observability import get_logger

log = get_logger(__name__)

MISSING_VERSIONS_MESSAGE = "Story has structure but no structure versions"


def validate_first_page_structure_version(story: Story) -> None:
    """Raises StructureVersionInconsistency if a structured story has no versions."""
    if story.structure is not None and not story.structure_versions:
        raise StructureVersionInconsistency(MISSING_VERSIONS_MESSAGE)


def validate_continuation_structure_version(story: Story, parent_page: Page) -> None:
    """Raises StructureVersionInconsistency unless the parent is linked to a version."""
    if story.structure is None:
        return
    if not story.structure_versions:
        raise StructureVersionInconsistency(MISSING_VERSIONS_MESSAGE)
    if parent_page.structure_version_id is None:
        raise StructureVersionInconsistency(
            f"Parent page {parent_page.id} has null structureVersionId but story has structure"
        )


def resolve_active_structure_version(
    story: Story, parent_page: Page
) -> VersionedStoryStructure | None:
    """The version the parent page was generated under.

    Falls back to the latest version when the parent references an ID the
    story does not know.
    """
    if parent_page.structure_version_id is None:
        return None

    version = get_structure_version(story, parent_page.structure_version_id)
    if version is not None:
        return version

    latest = get_latest_structure_version(story)
    log.warning(
        "structure_version_not_found",
        story_id=story.id,
        page_id=parent_page.id,
        version_id=parent_page.structure_version_id,
        fallback_version_id=latest.id if latest else None,
    )
    return latest
