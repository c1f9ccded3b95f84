"""Story engine: wires the pure core to generation and storage.

The engine owns no state of its own. Stories and pages live in the injected
repository, prose comes from the injected page generator, and structure
rewrites from the injected rewriter.

Resolving a choice that already leads somewhere returns the stored child and
never calls the generator. First-time resolution of a choice happens under
that choice's lock, so two concurrent requests produce a single child.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from storybranch.config import EngineConfig
from storybranch.engine.errors import EngineError, EngineErrorCode
from storybranch.engine.page_builder import (
    ContinuationPageBuildContext,
    FirstPageBuildContext,
    build_continuation_page,
    build_first_page,
    create_empty_structure_context,
)
from storybranch.engine.rewrite import (
    DeviationContext,
    DeviationInfo,
    handle_deviation,
    validate_deviation_targets,
)
from storybranch.engine.structure_state import (
    apply_structure_progression,
    create_initial_structure_state,
    create_story_structure,
)
from storybranch.engine.structure_versions import (
    resolve_active_structure_version,
    validate_continuation_structure_version,
    validate_first_page_structure_version,
)
from storybranch.models.generation import (
    ContinuationContext,
    GeneratedStructure,
    GenerationResult,
    OpeningContext,
)
from storybranch.models.story import (
    Story,
    add_structure_version,
    create_story,
    get_latest_structure_version,
)
from storybranch.models.structure import create_initial_versioned_structure
from storybranch.observability import bound_story_context, get_logger
from storybranch.state.aging import classify_promises, get_overdue_threads

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from storybranch.engine.protocols import PageGenerator, StructureRewriter
    from storybranch.models.page import Page
    from storybranch.models.structure import (
        AccumulatedStructureState,
        StoryStructure,
        VersionedStoryStructure,
    )
    from storybranch.persistence.store import StoryRepository

log = get_logger(__name__)

_PAGE_ID_ATTEMPTS = 5


@dataclass(frozen=True)
class StartStoryResult:
    story: Story
    page: Page


@dataclass(frozen=True)
class MakeChoiceResult:
    page: Page
    story: Story
    was_generated: bool
    deviation_info: DeviationInfo | None = None


@dataclass(frozen=True)
class StoryStats:
    page_count: int
    explored_branches: int
    total_branches: int
    has_ending: bool


class StoryEngine:
    """Async facade over the story core.

    Args:
        repository: Where stories and pages are stored.
        generator: Produces page deltas.
        rewriter: Regenerates structures after accepted deviations. Without
            one, deviations are logged and the current structure is kept.
        config: Pacing and view settings; defaults when omitted.
    """

    def __init__(
        self,
        repository: StoryRepository,
        generator: PageGenerator,
        rewriter: StructureRewriter | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._repository = repository
        self._generator = generator
        self._rewriter = rewriter
        self._config = config or EngineConfig()

    @property
    def config(self) -> EngineConfig:
        return self._config

    # -- Starting ----------------------------------------------------------------

    async def start_story(
        self,
        title: str,
        character_concept: str,
        worldbuilding: str = "",
        tone: str = "",
        structure: GeneratedStructure | None = None,
    ) -> StartStoryResult:
        """Create a story and generate its first page.

        The story is deleted again if the first page cannot be produced.
        """
        story = create_story(title, character_concept, worldbuilding, tone)
        if structure is not None:
            version = create_initial_versioned_structure(create_story_structure(structure))
            story = add_structure_version(story, version)

        await self._repository.save_story(story)
        log.info("story_created", story_id=story.id, structured=story.structure is not None)

        try:
            page = await self._generate_first_page(story)
            await self._repository.save_page(story.id, page)
        except Exception as e:
            log.warning("story_start_failed", story_id=story.id, error=str(e))
            await self._repository.delete_story(story.id)
            raise

        return StartStoryResult(story=story, page=page)

    async def _generate_first_page(self, story: Story) -> Page:
        validate_first_page_structure_version(story)

        version = get_latest_structure_version(story)
        if version is None:
            opening = OpeningContext(story=story)
            result = await self._call_generator(self._generator.generate_opening(opening))
            return build_first_page(result, create_empty_structure_context())

        initial_state = create_initial_structure_state(version.structure)
        opening = OpeningContext(
            story=story, structure=version.structure, structure_state=initial_state
        )
        result = await self._call_generator(self._generator.generate_opening(opening))
        if result.beat_deviation is not None:
            log.info("opening_deviation_ignored", story_id=story.id)

        structure_state = _progress(version.structure, initial_state, result)
        return build_first_page(
            result,
            FirstPageBuildContext(
                structure_state=structure_state,
                structure_version_id=version.id,
            ),
        )

    # -- Choices -----------------------------------------------------------------

    async def make_choice(self, story_id: str, page_id: int, choice_index: int) -> MakeChoiceResult:
        """Follow one choice, generating the child page on first use.

        Raises:
            EngineError: STORY_NOT_FOUND, PAGE_NOT_FOUND, INVALID_CHOICE,
                GENERATION_FAILED when the generator or rewriter fails, or
                VALIDATION_FAILED when a rewrite would alter concluded beats.
        """
        story = await self._require_story(story_id)
        parent = await self._require_page(story_id, page_id)

        if parent.is_ending:
            raise EngineError(
                "Cannot make a choice on an ending page", EngineErrorCode.INVALID_CHOICE
            )
        if not 0 <= choice_index < len(parent.choices):
            raise EngineError(
                f"Invalid choice index {choice_index}. Page has {len(parent.choices)} choices.",
                EngineErrorCode.INVALID_CHOICE,
            )

        existing = await self._linked_child(story, parent, choice_index)
        if existing is not None:
            return existing

        lock = self._repository.choice_lock(story_id, page_id, choice_index)
        with bound_story_context(
            story_id=story_id, parent_page_id=page_id, choice_index=choice_index
        ):
            async with lock:
                # Another request may have generated the child while we waited.
                parent = await self._require_page(story_id, page_id)
                existing = await self._linked_child(story, parent, choice_index)
                if existing is not None:
                    return existing

                return await self._generate_child(story, parent, choice_index)

    async def _linked_child(
        self, story: Story, parent: Page, choice_index: int
    ) -> MakeChoiceResult | None:
        next_page_id = parent.choices[choice_index].next_page_id
        if next_page_id is None:
            return None
        page = await self._repository.load_page(story.id, next_page_id)
        if page is None:
            raise EngineError(
                f"Page {next_page_id} referenced by choice but not found",
                EngineErrorCode.PAGE_NOT_FOUND,
            )
        return MakeChoiceResult(page=page, story=story, was_generated=False)

    async def _generate_child(
        self, story: Story, parent: Page, choice_index: int
    ) -> MakeChoiceResult:
        validate_continuation_structure_version(story, parent)
        version = resolve_active_structure_version(story, parent)
        parent_state = parent.accumulated_structure_state

        pacing = self._config.thread_pacing
        open_threads = parent.accumulated_active_state.open_threads
        promises = classify_promises(parent.accumulated_promises, pacing)
        context = ContinuationContext(
            story=story,
            parent_page=parent,
            choice_index=choice_index,
            choice_text=parent.choices[choice_index].text,
            structure=version.structure if version else None,
            structure_state=parent_state,
            overdue_thread_ids=[
                t.id for t in get_overdue_threads(open_threads, parent.thread_ages, pacing)
            ],
            aging_promises=promises.aging,
            recent_promises=promises.recent,
        )
        result = await self._call_generator(self._generator.generate_continuation(context))

        async with self._repository.story_lock(story.id):
            # Pick up structure versions added by other branches meanwhile.
            story = await self._require_story(story.id)
            if version is not None:
                version = resolve_active_structure_version(story, parent)
            page_id = await self._repository.get_max_page_id(story.id) + 1

            rewritten = False
            deviation_info = None
            deviation = result.beat_deviation
            if deviation is not None and version is not None:
                if not validate_deviation_targets(deviation, parent_state):
                    log.warning(
                        "deviation_rejected",
                        story_id=story.id,
                        page_id=page_id,
                        invalidated=deviation.invalidated_beat_ids,
                        concluded=parent_state.concluded_beat_ids(),
                    )
                elif self._rewriter is None:
                    log.warning("deviation_unhandled", story_id=story.id, page_id=page_id)
                else:
                    handled = await handle_deviation(
                        DeviationContext(
                            story=story,
                            current_version=version,
                            parent_structure_state=parent_state,
                            deviation=deviation,
                            new_page_id=page_id,
                        ),
                        self._rewriter,
                    )
                    version = handled.active_version
                    deviation_info = handled.deviation_info
                    rewritten = True

            page, version = await self._insert_child(
                story.id, result, parent, choice_index, version, rewritten
            )
            updated_story = story
            if rewritten:
                updated_story = await self._repository.append_structure_version(
                    story.id, version
                )
            await self._repository.update_choice_link(story.id, parent.id, choice_index, page.id)

        log.info(
            "page_generated",
            story_id=story.id,
            page_id=page.id,
            parent_page_id=parent.id,
            choice_index=choice_index,
            is_ending=page.is_ending,
        )
        return MakeChoiceResult(
            page=page,
            story=updated_story,
            was_generated=True,
            deviation_info=deviation_info,
        )

    def _build_child(self, result, parent, choice_index, page_id, version) -> Page:
        parent_state = parent.accumulated_structure_state
        if version is None:
            structure_state, version_id = parent_state, None
        else:
            structure_state = _progress(version.structure, parent_state, result)
            version_id = version.id

        return build_continuation_page(
            result,
            ContinuationPageBuildContext.from_parent(
                page_id=page_id,
                parent=parent,
                parent_choice_index=choice_index,
                structure_state=structure_state,
                structure_version_id=version_id,
            ),
        )

    async def _insert_child(
        self,
        story_id: str,
        result: GenerationResult,
        parent: Page,
        choice_index: int,
        version: VersionedStoryStructure | None,
        rewritten: bool,
    ) -> tuple[Page, VersionedStoryStructure | None]:
        """Store the child under the next free page ID.

        Another engine sharing the store may take an ID while this one waits
        on the rewriter; the page is then rebuilt under the following ID, and
        a version created for it is re-stamped to match.
        """
        for attempt in range(1, _PAGE_ID_ATTEMPTS + 1):
            page_id = await self._repository.get_max_page_id(story_id) + 1
            if rewritten and version.created_at_page_id != page_id:
                version = version.model_copy(update={"created_at_page_id": page_id})
            page = self._build_child(result, parent, choice_index, page_id, version)
            try:
                await self._repository.save_page(story_id, page)
            except EngineError as e:
                if e.code != EngineErrorCode.PAGE_CONFLICT:
                    raise
                log.warning("page_id_conflict", story_id=story_id, page_id=page_id, attempt=attempt)
                continue
            return page, version
        raise EngineError(
            f"No free page ID for story {story_id} after {_PAGE_ID_ATTEMPTS} attempts",
            EngineErrorCode.PAGE_CONFLICT,
        )

    async def _call_generator(self, call: Awaitable[GenerationResult]) -> GenerationResult:
        try:
            return await call
        except EngineError:
            raise
        except Exception as e:
            log.error("generation_failed", error=str(e), error_type=type(e).__name__)
            raise EngineError(
                f"Page generation failed: {e}", EngineErrorCode.GENERATION_FAILED
            ) from e

    # -- Lookups -----------------------------------------------------------------

    async def _require_story(self, story_id: str) -> Story:
        story = await self._repository.load_story(story_id)
        if story is None:
            raise EngineError(f"Story {story_id} not found", EngineErrorCode.STORY_NOT_FOUND)
        return story

    async def _require_page(self, story_id: str, page_id: int) -> Page:
        page = await self._repository.load_page(story_id, page_id)
        if page is None:
            raise EngineError(
                f"Page {page_id} not found in story {story_id}",
                EngineErrorCode.PAGE_NOT_FOUND,
            )
        return page

    async def load_story(self, story_id: str) -> Story | None:
        return await self._repository.load_story(story_id)

    async def get_page(self, story_id: str, page_id: int) -> Page | None:
        return await self._repository.load_page(story_id, page_id)

    async def get_starting_page(self, story_id: str) -> Page | None:
        return await self._repository.load_page(story_id, 1)

    async def restart_story(self, story_id: str) -> Page:
        page = await self.get_starting_page(story_id)
        if page is None:
            raise EngineError(
                f"Story {story_id} has no starting page", EngineErrorCode.PAGE_NOT_FOUND
            )
        return page

    async def list_stories(self) -> list[Story]:
        return await self._repository.list_stories()

    async def delete_story(self, story_id: str) -> None:
        await self._repository.delete_story(story_id)

    async def story_exists(self, story_id: str) -> bool:
        return await self._repository.load_story(story_id) is not None

    async def get_full_story(self, story_id: str) -> tuple[Story, dict[int, Page]] | None:
        story = await self._repository.load_story(story_id)
        if story is None:
            return None
        return story, await self._repository.load_all_pages(story_id)

    async def get_story_stats(self, story_id: str) -> StoryStats:
        await self._require_story(story_id)
        pages = await self._repository.load_all_pages(story_id)
        return compute_story_stats(pages.values())


def _progress(
    structure: StoryStructure, state: AccumulatedStructureState, result: GenerationResult
) -> AccumulatedStructureState:
    try:
        return apply_structure_progression(
            structure, state, result.beat_concluded, result.beat_resolution
        )
    except ValueError as e:
        raise EngineError(str(e), EngineErrorCode.GENERATION_FAILED) from e


def compute_story_stats(pages) -> StoryStats:
    """Page count, explored and total branch counts, and whether an ending exists."""
    page_count = explored = total = 0
    has_ending = False
    for page in pages:
        page_count += 1
        total += len(page.choices)
        explored += sum(1 for c in page.choices if c.next_page_id is not None)
        has_ending = has_ending or page.is_ending
    return StoryStats(
        page_count=page_count,
        explored_branches=explored,
        total_branches=total,
        has_ending=has_ending,
    )
