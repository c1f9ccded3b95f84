"""Deviation-driven structure rewrite and merge.

When generated prose drifts from the planned beats, the unfinished part of the
structure is regenerated. Concluded beats are history: they are carried into
the new version verbatim, with their IDs, and regenerated beats are numbered
after them.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from storybranch.engine.errors import EngineError, EngineErrorCode
from storybranch.engine.protocols import StructureRewriter
from storybranch.engine.structure_state import get_current_beat
from storybranch.models.story import Story, add_structure_version
from storybranch.models.structure import (
    AccumulatedStructureState,
    BeatDeviation,
    StoryAct,
    StoryBeat,
    StoryStructure,
    VersionedStoryStructure,
    create_rewritten_versioned_structure,
)
from storybranch.observability import get_logger

log = get_logger(__name__)

_BEAT_ID = re.compile(r"^(\d+)\.(\d+)$")

FALLBACK_ENTRY_CONDITION = "Continuing from prior act"


@dataclass(frozen=True)
class CompletedBeat:
    act_index: int
    beat_index: int
    beat_id: str
    name: str
    description: str
    objective: str
    resolution: str


@dataclass(frozen=True)
class PlannedBeat:
    act_index: int
    beat_index: int
    beat_id: str
    name: str
    description: str
    objective: str


@dataclass(frozen=True)
class StructureRewriteContext:
    """Everything the structure rewriter needs to regenerate the plan."""

    story_id: str
    tone: str
    character_concept: str
    worldbuilding: str
    premise: str
    original_theme: str
    deviation_reason: str
    narrative_summary: str
    current_act_index: int
    current_beat_index: int
    total_act_count: int
    completed_beats: tuple[CompletedBeat, ...] = ()
    planned_beats: tuple[PlannedBeat, ...] = ()


@dataclass(frozen=True)
class DeviationInfo:
    detected: bool
    reason: str
    beats_invalidated: int


@dataclass(frozen=True)
class DeviationContext:
    story: Story
    current_version: VersionedStoryStructure
    parent_structure_state: AccumulatedStructureState
    deviation: BeatDeviation
    new_page_id: int


@dataclass(frozen=True)
class DeviationHandlingResult:
    updated_story: Story
    active_version: VersionedStoryStructure
    deviation_info: DeviationInfo
    preserved_beat_ids: list[str] = field(default_factory=list)


def parse_beat_indices(beat_id: str) -> tuple[int, int] | None:
    """Zero-based (act, beat) indices of an ``"a.b"`` beat ID, or None."""
    match = _BEAT_ID.match(beat_id)
    if match is None:
        return None
    act_number, beat_number = int(match.group(1)), int(match.group(2))
    if act_number < 1 or beat_number < 1:
        return None
    return act_number - 1, beat_number - 1


def validate_deviation_targets(
    deviation: BeatDeviation, state: AccumulatedStructureState
) -> bool:
    """False if the deviation tries to invalidate a concluded beat."""
    concluded = set(state.concluded_beat_ids())
    return not any(beat_id in concluded for beat_id in deviation.invalidated_beat_ids)


def get_preserved_beat_ids(state: AccumulatedStructureState) -> list[str]:
    return state.concluded_beat_ids()


def extract_completed_beats(
    structure: StoryStructure, state: AccumulatedStructureState
) -> list[CompletedBeat]:
    """Concluded beats with their resolutions, in structure order."""
    completed = []
    for progression in state.beat_progressions:
        if progression.status != "concluded":
            continue

        indices = parse_beat_indices(progression.beat_id)
        if indices is None:
            log.warning("completed_beat_id_invalid", beat_id=progression.beat_id)
            continue
        act_index, beat_index = indices
        if act_index >= len(structure.acts) or beat_index >= len(
            structure.acts[act_index].beats
        ):
            log.warning("completed_beat_not_in_structure", beat_id=progression.beat_id)
            continue

        beat = structure.acts[act_index].beats[beat_index]
        completed.append(
            CompletedBeat(
                act_index=act_index,
                beat_index=beat_index,
                beat_id=progression.beat_id,
                name=beat.name,
                description=beat.description,
                objective=beat.objective,
                resolution=progression.resolution or "",
            )
        )

    completed.sort(key=lambda b: (b.act_index, b.beat_index))
    return completed


def extract_planned_beats(
    structure: StoryStructure, state: AccumulatedStructureState
) -> list[PlannedBeat]:
    """Unconcluded beats strictly after the current position."""
    concluded = set(state.concluded_beat_ids())
    position = (state.current_act_index, state.current_beat_index)

    planned = []
    for act_index, act in enumerate(structure.acts):
        for beat_index, beat in enumerate(act.beats):
            if (act_index, beat_index) <= position or beat.id in concluded:
                continue
            planned.append(
                PlannedBeat(
                    act_index=act_index,
                    beat_index=beat_index,
                    beat_id=beat.id,
                    name=beat.name,
                    description=beat.description,
                    objective=beat.objective,
                )
            )
    return planned


def build_rewrite_context(
    story: Story,
    version: VersionedStoryStructure,
    state: AccumulatedStructureState,
    deviation: BeatDeviation,
) -> StructureRewriteContext:
    structure = version.structure
    return StructureRewriteContext(
        story_id=story.id,
        tone=story.tone,
        character_concept=story.character_concept,
        worldbuilding=story.worldbuilding,
        premise=structure.premise,
        original_theme=structure.overall_theme,
        deviation_reason=deviation.reason,
        narrative_summary=deviation.narrative_summary,
        current_act_index=state.current_act_index,
        current_beat_index=state.current_beat_index,
        total_act_count=len(structure.acts),
        completed_beats=tuple(extract_completed_beats(structure, state)),
        planned_beats=tuple(extract_planned_beats(structure, state)),
    )


def merge_preserved_with_regenerated(
    preserved_beats: Sequence[CompletedBeat],
    regenerated: StoryStructure,
    original_theme: str,
) -> StoryStructure:
    """Combine concluded beats with a regenerated plan.

    Per act, preserved beats come first, unchanged. Regenerated beats follow,
    renumbered after the highest preserved beat of that act. A regenerated
    beat repeating the description and objective of a beat already in its act
    is dropped.

    Raises:
        ValueError: If an act ends up without beats.
    """
    by_act: dict[int, list[CompletedBeat]] = {}
    for beat in sorted(preserved_beats, key=lambda b: (b.act_index, b.beat_index)):
        by_act.setdefault(beat.act_index, []).append(beat)

    act_count = max(len(regenerated.acts), max(by_act, default=-1) + 1)

    acts = []
    for act_index in range(act_count):
        act_number = act_index + 1
        source = regenerated.acts[act_index] if act_index < len(regenerated.acts) else None

        beats = [
            StoryBeat(
                id=b.beat_id,
                name=b.name,
                description=b.description,
                objective=b.objective,
            )
            for b in by_act.get(act_index, [])
        ]
        seen = {(b.description, b.objective) for b in beats}
        next_number = max((b.beat_index + 1 for b in by_act.get(act_index, [])), default=0) + 1
        for beat in source.beats if source else []:
            key = (beat.description, beat.objective)
            if key in seen:
                continue
            seen.add(key)
            beats.append(
                StoryBeat(
                    id=f"{act_number}.{next_number}",
                    name=beat.name,
                    description=beat.description,
                    objective=beat.objective,
                )
            )
            next_number += 1

        if not beats:
            raise ValueError(f"Act {act_number} has no beats after merging")

        acts.append(
            StoryAct(
                id=str(act_number),
                name=source.name if source and source.name else f"Act {act_number}",
                objective=source.objective if source else "",
                stakes=source.stakes if source else "",
                entry_condition=(
                    source.entry_condition
                    if source and source.entry_condition
                    else FALLBACK_ENTRY_CONDITION
                ),
                beats=beats,
            )
        )

    return StoryStructure(
        acts=acts,
        overall_theme=original_theme,
        premise=regenerated.premise,
    )


def validate_preserved_beats(
    original: StoryStructure,
    merged: StoryStructure,
    state: AccumulatedStructureState,
) -> bool:
    """True if every concluded beat sits unchanged at its position in *merged*."""
    for beat_id in state.concluded_beat_ids():
        indices = parse_beat_indices(beat_id)
        if indices is None:
            return False
        act_index, beat_index = indices
        try:
            before = original.acts[act_index].beats[beat_index]
            after = merged.acts[act_index].beats[beat_index]
        except IndexError:
            return False
        if (before.id, before.name, before.description, before.objective) != (
            after.id,
            after.name,
            after.description,
            after.objective,
        ):
            return False
    return True


async def handle_deviation(
    context: DeviationContext, rewriter: StructureRewriter
) -> DeviationHandlingResult:
    """Rewrite the structure after an accepted deviation.

    Raises:
        EngineError: GENERATION_FAILED if the rewriter fails or its output
            cannot be merged or drops the current beat, VALIDATION_FAILED if
            the merge would alter concluded beats.
    """
    rewrite_context = build_rewrite_context(
        context.story,
        context.current_version,
        context.parent_structure_state,
        context.deviation,
    )
    log.info(
        "structure_rewrite_started",
        story_id=context.story.id,
        reason=context.deviation.reason,
        invalidated=context.deviation.invalidated_beat_ids,
    )

    try:
        regenerated = await rewriter.rewrite_structure(rewrite_context)
    except EngineError:
        raise
    except Exception as e:
        log.error("structure_rewrite_failed", story_id=context.story.id, error=str(e))
        raise EngineError(
            f"Structure rewrite failed: {e}", EngineErrorCode.GENERATION_FAILED
        ) from e

    try:
        merged = merge_preserved_with_regenerated(
            rewrite_context.completed_beats, regenerated, rewrite_context.original_theme
        )
    except ValueError as e:
        raise EngineError(
            f"Structure rewrite could not be merged: {e}", EngineErrorCode.GENERATION_FAILED
        ) from e

    original = context.current_version.structure
    if not validate_preserved_beats(original, merged, context.parent_structure_state):
        raise EngineError(
            "Structure rewrite altered concluded beats", EngineErrorCode.VALIDATION_FAILED
        )
    if get_current_beat(merged, context.parent_structure_state) is None:
        state = context.parent_structure_state
        log.error(
            "structure_rewrite_dropped_position",
            story_id=context.story.id,
            act_index=state.current_act_index,
            beat_index=state.current_beat_index,
        )
        raise EngineError(
            f"Structure rewrite has no beat at the current position "
            f"(act {state.current_act_index}, beat {state.current_beat_index})",
            EngineErrorCode.GENERATION_FAILED,
        )

    preserved_ids = get_preserved_beat_ids(context.parent_structure_state)
    new_version = create_rewritten_versioned_structure(
        context.current_version,
        merged,
        preserved_ids,
        context.deviation.reason,
        context.new_page_id,
    )
    log.info(
        "structure_rewritten",
        story_id=context.story.id,
        previous_version_id=context.current_version.id,
        version_id=new_version.id,
        preserved=preserved_ids,
    )

    return DeviationHandlingResult(
        updated_story=add_structure_version(context.story, new_version),
        active_version=new_version,
        deviation_info=DeviationInfo(
            detected=True,
            reason=context.deviation.reason,
            beats_invalidated=len(context.deviation.invalidated_beat_ids),
        ),
        preserved_beat_ids=preserved_ids,
    )
