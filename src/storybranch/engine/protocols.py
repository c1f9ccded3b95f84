"""Collaborator protocols the engine depends on.

Concrete implementations call an LLM; the engine only awaits them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from storybranch.engine.rewrite import StructureRewriteContext
    from storybranch.models.generation import (
        ContinuationContext,
        GenerationResult,
        OpeningContext,
    )
    from storybranch.models.structure import StoryStructure


@runtime_checkable
class PageGenerator(Protocol):
    """Produces validated page deltas."""

    async def generate_opening(self, context: OpeningContext) -> GenerationResult:
        """Generate page 1 of a story."""
        ...

    async def generate_continuation(self, context: ContinuationContext) -> GenerationResult:
        """Generate the page that follows one choice."""
        ...


@runtime_checkable
class StructureRewriter(Protocol):
    """Regenerates the unfinished part of a story structure after a deviation."""

    async def rewrite_structure(self, context: StructureRewriteContext) -> StoryStructure:
        """Return a (possibly partial) structure covering the remaining story.

        Beat IDs of the returned structure are renumbered during the merge.
        The merged result must still hold a beat at the current act and beat
        position; a plan that stops short of it is rejected.
        """
        ...
