"""Beat state machine.

Each beat moves ``pending -> active -> concluded``; concluded is terminal.
Progression is recorded per page, so sibling branches advance independently
from the same parent state.
"""

from __future__ import annotations

from dataclasses import dataclass

from storybranch.engine.errors import EngineError, EngineErrorCode
from storybranch.models.generation import GeneratedStructure
from storybranch.models.structure import (
    AccumulatedStructureState,
    BeatProgression,
    StoryAct,
    StoryBeat,
    StoryStructure,
)
from storybranch.observability import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class StructureProgressionResult:
    updated_state: AccumulatedStructureState
    act_advanced: bool
    beat_advanced: bool
    is_complete: bool


def create_story_structure(generated: GeneratedStructure) -> StoryStructure:
    """Assign hierarchical IDs ("1", "1.1", "1.2", "2.1", ...) to a generated plan."""
    acts = []
    for act_number, act in enumerate(generated.acts, start=1):
        beats = [
            StoryBeat(
                id=f"{act_number}.{beat_number}",
                name=beat.name.strip(),
                description=beat.description.strip(),
                objective=beat.objective.strip(),
            )
            for beat_number, beat in enumerate(act.beats, start=1)
        ]
        acts.append(
            StoryAct(
                id=str(act_number),
                name=act.name.strip(),
                objective=act.objective.strip(),
                stakes=act.stakes.strip(),
                entry_condition=act.entry_condition.strip(),
                beats=beats,
            )
        )
    return StoryStructure(
        acts=acts,
        overall_theme=generated.overall_theme.strip(),
        premise=generated.premise.strip(),
    )


def create_initial_structure_state(structure: StoryStructure) -> AccumulatedStructureState:
    """Act 0, beat 0: the first beat active, every other beat pending."""
    progressions = []
    for act_index, act in enumerate(structure.acts):
        for beat_index, beat in enumerate(act.beats):
            first = act_index == 0 and beat_index == 0
            progressions.append(
                BeatProgression(beat_id=beat.id, status="active" if first else "pending")
            )
    return AccumulatedStructureState(
        current_act_index=0,
        current_beat_index=0,
        beat_progressions=progressions,
    )


def get_current_act(
    structure: StoryStructure, state: AccumulatedStructureState
) -> StoryAct | None:
    if 0 <= state.current_act_index < len(structure.acts):
        return structure.acts[state.current_act_index]
    return None


def get_current_beat(
    structure: StoryStructure, state: AccumulatedStructureState
) -> StoryBeat | None:
    act = get_current_act(structure, state)
    if act is None or not 0 <= state.current_beat_index < len(act.beats):
        return None
    return act.beats[state.current_beat_index]


def _upsert(
    progressions: list[BeatProgression], beat_id: str, progression: BeatProgression
) -> list[BeatProgression]:
    updated = [progression if p.beat_id == beat_id else p for p in progressions]
    if not any(p.beat_id == beat_id for p in progressions):
        updated.append(progression)
    return updated


def advance_structure_state(
    structure: StoryStructure,
    state: AccumulatedStructureState,
    beat_resolution: str,
) -> StructureProgressionResult:
    """Conclude the current beat and activate the next one.

    When the concluded beat is the last beat of the last act, the indices stay
    where they are and ``is_complete`` is True.

    Raises:
        ValueError: If *beat_resolution* is blank.
        EngineError: If the state does not point at a beat of *structure*.
    """
    resolution = beat_resolution.strip()
    if not resolution:
        raise ValueError("Beat resolution is required when concluding a beat")

    act = get_current_act(structure, state)
    beat = get_current_beat(structure, state)
    if act is None or beat is None:
        raise EngineError(
            f"Structure state points outside the structure "
            f"(act {state.current_act_index}, beat {state.current_beat_index})",
            EngineErrorCode.INVALID_STRUCTURE,
        )

    progressions = _upsert(
        list(state.beat_progressions),
        beat.id,
        BeatProgression(beat_id=beat.id, status="concluded", resolution=resolution),
    )

    is_last_beat_of_act = state.current_beat_index >= len(act.beats) - 1
    is_last_act = state.current_act_index >= len(structure.acts) - 1

    if is_last_beat_of_act and is_last_act:
        log.info("structure_complete", beat_id=beat.id)
        return StructureProgressionResult(
            updated_state=state.model_copy(update={"beat_progressions": progressions}),
            act_advanced=False,
            beat_advanced=False,
            is_complete=True,
        )

    if is_last_beat_of_act:
        act_index, beat_index = state.current_act_index + 1, 0
    else:
        act_index, beat_index = state.current_act_index, state.current_beat_index + 1

    next_act = structure.acts[act_index]
    if not next_act.beats:
        raise EngineError(
            f"Act {next_act.id} has no beats",
            EngineErrorCode.INVALID_STRUCTURE,
        )
    next_beat = next_act.beats[beat_index]
    progressions = _upsert(
        progressions,
        next_beat.id,
        BeatProgression(beat_id=next_beat.id, status="active"),
    )

    log.debug("beat_advanced", concluded=beat.id, active=next_beat.id)
    return StructureProgressionResult(
        updated_state=AccumulatedStructureState(
            current_act_index=act_index,
            current_beat_index=beat_index,
            beat_progressions=progressions,
        ),
        act_advanced=is_last_beat_of_act,
        beat_advanced=True,
        is_complete=False,
    )


def apply_structure_progression(
    structure: StoryStructure,
    parent_state: AccumulatedStructureState,
    beat_concluded: bool,
    beat_resolution: str,
) -> AccumulatedStructureState:
    """Child structure state: the parent's, advanced when a beat concluded."""
    if not beat_concluded:
        return parent_state
    return advance_structure_state(structure, parent_state, beat_resolution).updated_state
