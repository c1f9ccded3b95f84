"""Page construction.

Pages are assembled from a :class:`GenerationResult` and the accumulated state
of the parent page (or empty state for page 1). Shape invariants are checked
once here, so every persisted page satisfies them.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from storybranch.engine.errors import StructuralInvariantViolation
from storybranch.models.generation import MAX_CHOICES, MIN_CHOICES, GenerationResult
from storybranch.models.page import Choice, Page, ProtagonistAffect
from storybranch.models.state import (
    ALL_PREFIXES,
    CHARACTER_STATE_PREFIX,
    CONSTRAINT_PREFIX,
    HEALTH_PREFIX,
    INVENTORY_PREFIX,
    PROMISE_PREFIX,
    THREAD_PREFIX,
    THREAT_PREFIX,
    AccumulatedCharacterState,
    ActiveState,
    ActiveStateChanges,
    CharacterStateChange,
    KeyedChanges,
    KeyedEntry,
    ThreadEntry,
    TrackedPromise,
)
from storybranch.models.structure import (
    AccumulatedStructureState,
    create_empty_accumulated_structure_state,
)
from storybranch.state.accumulators import (
    accumulate_character_state,
    accumulate_health,
    accumulate_inventory,
    apply_active_state_changes,
    create_character_state_changes,
    create_health_changes,
    create_inventory_changes,
)
from storybranch.state.aging import (
    compute_accumulated_promises,
    compute_continuation_thread_ages,
    compute_first_page_thread_ages,
)
from storybranch.state.keyed_entries import get_max_id_number

FIRST_PAGE_ID = 1


@dataclass(frozen=True)
class FirstPageBuildContext:
    structure_state: AccumulatedStructureState
    structure_version_id: str | None


@dataclass(frozen=True)
class ContinuationPageBuildContext:
    """Parent linkage and the parent's accumulated state.

    ``structure_state`` is the child's structure state, already advanced by
    the caller when the generation concluded a beat.
    """

    page_id: int
    parent_page_id: int
    parent_choice_index: int
    parent_accumulated_active_state: ActiveState
    parent_accumulated_inventory: Sequence[KeyedEntry]
    parent_accumulated_health: Sequence[KeyedEntry]
    parent_accumulated_character_state: AccumulatedCharacterState
    structure_state: AccumulatedStructureState
    structure_version_id: str | None
    parent_thread_ages: Mapping[str, int] = field(default_factory=dict)
    parent_accumulated_promises: Sequence[TrackedPromise] = ()
    parent_id_high_water: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_parent(
        cls,
        page_id: int,
        parent: Page,
        parent_choice_index: int,
        structure_state: AccumulatedStructureState,
        structure_version_id: str | None,
    ) -> ContinuationPageBuildContext:
        return cls(
            page_id=page_id,
            parent_page_id=parent.id,
            parent_choice_index=parent_choice_index,
            parent_accumulated_active_state=parent.accumulated_active_state,
            parent_accumulated_inventory=parent.accumulated_inventory,
            parent_accumulated_health=parent.accumulated_health,
            parent_accumulated_character_state=parent.accumulated_character_state,
            structure_state=structure_state,
            structure_version_id=structure_version_id,
            parent_thread_ages=parent.thread_ages,
            parent_accumulated_promises=parent.accumulated_promises,
            parent_id_high_water=parent.id_high_water,
        )


def create_empty_structure_context() -> FirstPageBuildContext:
    """Structure context for stories without a structure."""
    return FirstPageBuildContext(
        structure_state=create_empty_accumulated_structure_state(),
        structure_version_id=None,
    )


# ---------------------------------------------------------------------------
# create_page
# ---------------------------------------------------------------------------


def _check_shape(
    page_id: int,
    choices: Sequence[Choice],
    is_ending: bool,
    parent_page_id: int | None,
    parent_choice_index: int | None,
) -> list[str]:
    violations = []

    if is_ending and choices:
        violations.append(f"ending page has {len(choices)} choices, expected 0")
    if not is_ending and not MIN_CHOICES <= len(choices) <= MAX_CHOICES:
        violations.append(
            f"non-ending page has {len(choices)} choices, "
            f"expected {MIN_CHOICES}-{MAX_CHOICES}"
        )

    seen: set[str] = set()
    for choice in choices:
        key = choice.text.strip().lower()
        if key in seen:
            violations.append(f"duplicate choice text {choice.text.strip()!r}")
        seen.add(key)

    if page_id == FIRST_PAGE_ID:
        if parent_page_id is not None or parent_choice_index is not None:
            violations.append("first page must not have a parent")
    elif parent_page_id is None or parent_choice_index is None:
        violations.append("continuation page requires parent_page_id and parent_choice_index")
    elif parent_choice_index < 0:
        violations.append(f"parent_choice_index must be >= 0, got {parent_choice_index}")

    return violations


def create_page(
    *,
    id: int,
    narrative_text: str,
    choices: Sequence[Choice],
    is_ending: bool,
    parent_page_id: int | None,
    parent_choice_index: int | None,
    inventory_changes: KeyedChanges | None = None,
    accumulated_inventory: Sequence[KeyedEntry] = (),
    health_changes: KeyedChanges | None = None,
    accumulated_health: Sequence[KeyedEntry] = (),
    character_state_changes: Sequence[CharacterStateChange] = (),
    accumulated_character_state: AccumulatedCharacterState | None = None,
    active_state_changes: ActiveStateChanges | None = None,
    accumulated_active_state: ActiveState | None = None,
    accumulated_structure_state: AccumulatedStructureState | None = None,
    structure_version_id: str | None = None,
    protagonist_affect: ProtagonistAffect | None = None,
    thread_ages: Mapping[str, int] | None = None,
    accumulated_promises: Sequence[TrackedPromise] = (),
    id_high_water: Mapping[str, int] | None = None,
) -> Page:
    """Build a page, enforcing the page-tree shape invariants.

    Raises:
        StructuralInvariantViolation: If the choice count does not match
            ``is_ending``, choice texts repeat (case-insensitively), or the
            parent fields do not match the page position.
    """
    violations = _check_shape(id, choices, is_ending, parent_page_id, parent_choice_index)
    if violations:
        raise StructuralInvariantViolation(page_id=id, violations=violations)

    return Page(
        id=id,
        narrative_text=narrative_text,
        choices=[Choice(text=c.text.strip(), next_page_id=c.next_page_id) for c in choices],
        is_ending=is_ending,
        inventory_changes=inventory_changes or KeyedChanges(),
        accumulated_inventory=list(accumulated_inventory),
        health_changes=health_changes or KeyedChanges(),
        accumulated_health=list(accumulated_health),
        character_state_changes=list(character_state_changes),
        accumulated_character_state=accumulated_character_state or AccumulatedCharacterState(),
        active_state_changes=active_state_changes or ActiveStateChanges(),
        accumulated_active_state=accumulated_active_state or ActiveState(),
        accumulated_structure_state=(
            accumulated_structure_state or create_empty_accumulated_structure_state()
        ),
        structure_version_id=structure_version_id,
        protagonist_affect=protagonist_affect or ProtagonistAffect(),
        thread_ages=dict(thread_ages or {}),
        accumulated_promises=list(accumulated_promises),
        id_high_water=dict(id_high_water or {}),
        parent_page_id=parent_page_id,
        parent_choice_index=parent_choice_index,
    )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _active_state_changes(result: GenerationResult) -> ActiveStateChanges:
    return ActiveStateChanges(
        new_location=result.current_location.strip() or None,
        threats_added=result.threats_added,
        threats_removed=result.threats_removed,
        constraints_added=result.constraints_added,
        constraints_removed=result.constraints_removed,
        threads_added=result.threads_added,
        threads_resolved=result.threads_resolved,
    )


def _character_state_changes(result: GenerationResult) -> list[CharacterStateChange]:
    return create_character_state_changes(
        [(c.character_name, c.states) for c in result.character_state_changes_added],
        [(c.character_name, c.states) for c in result.character_state_changes_removed],
    )


def _high_water(
    parent: Mapping[str, int],
    inventory: Sequence[KeyedEntry],
    health: Sequence[KeyedEntry],
    characters: AccumulatedCharacterState,
    active: ActiveState,
    promises: Sequence[TrackedPromise],
) -> dict[str, int]:
    current = {
        INVENTORY_PREFIX: get_max_id_number(inventory, INVENTORY_PREFIX),
        HEALTH_PREFIX: get_max_id_number(health, HEALTH_PREFIX),
        CHARACTER_STATE_PREFIX: get_max_id_number(
            characters.all_entries(), CHARACTER_STATE_PREFIX
        ),
        THREAT_PREFIX: get_max_id_number(active.active_threats, THREAT_PREFIX),
        CONSTRAINT_PREFIX: get_max_id_number(active.active_constraints, CONSTRAINT_PREFIX),
        THREAD_PREFIX: get_max_id_number(active.open_threads, THREAD_PREFIX),
        PROMISE_PREFIX: get_max_id_number(promises, PROMISE_PREFIX),  # type: ignore[arg-type]
    }
    return {prefix: max(parent.get(prefix, 0), current[prefix]) for prefix in ALL_PREFIXES}


def build_first_page(result: GenerationResult, context: FirstPageBuildContext) -> Page:
    """Build page 1: every accumulator starts from empty state."""
    inventory_changes = create_inventory_changes(result.inventory_added, result.inventory_removed)
    health_changes = create_health_changes(result.health_added, result.health_removed)
    character_changes = _character_state_changes(result)
    active_changes = _active_state_changes(result)

    inventory = accumulate_inventory([], inventory_changes)
    health = accumulate_health([], health_changes)
    characters = accumulate_character_state(AccumulatedCharacterState(), character_changes)
    active = apply_active_state_changes(ActiveState(), active_changes)
    promises = compute_accumulated_promises(
        [], result.resolved_promise_ids, result.detected_promises, age_existing=False
    )

    return create_page(
        id=FIRST_PAGE_ID,
        narrative_text=result.narrative,
        choices=[Choice(text=text) for text in result.choices],
        is_ending=result.is_ending,
        parent_page_id=None,
        parent_choice_index=None,
        inventory_changes=inventory_changes,
        accumulated_inventory=inventory,
        health_changes=health_changes,
        accumulated_health=health,
        character_state_changes=character_changes,
        accumulated_character_state=characters,
        active_state_changes=active_changes,
        accumulated_active_state=active,
        accumulated_structure_state=context.structure_state,
        structure_version_id=context.structure_version_id,
        protagonist_affect=result.protagonist_affect,
        thread_ages=compute_first_page_thread_ages(active.open_threads),
        accumulated_promises=promises,
        id_high_water=_high_water({}, inventory, health, characters, active, promises),
    )


def build_continuation_page(
    result: GenerationResult, context: ContinuationPageBuildContext
) -> Page:
    """Build a child page from its parent's accumulated state plus this delta."""
    floors = context.parent_id_high_water

    inventory_changes = create_inventory_changes(result.inventory_added, result.inventory_removed)
    health_changes = create_health_changes(result.health_added, result.health_removed)
    character_changes = _character_state_changes(result)
    active_changes = _active_state_changes(result)

    inventory = accumulate_inventory(
        context.parent_accumulated_inventory,
        inventory_changes,
        floor=floors.get(INVENTORY_PREFIX, 0),
    )
    health = accumulate_health(
        context.parent_accumulated_health,
        health_changes,
        floor=floors.get(HEALTH_PREFIX, 0),
    )
    characters = accumulate_character_state(
        context.parent_accumulated_character_state,
        character_changes,
        floor=floors.get(CHARACTER_STATE_PREFIX, 0),
    )
    active = apply_active_state_changes(
        context.parent_accumulated_active_state, active_changes, floors=floors
    )
    promises = compute_accumulated_promises(
        context.parent_accumulated_promises,
        result.resolved_promise_ids,
        result.detected_promises,
        floor=floors.get(PROMISE_PREFIX, 0),
    )
    parent_threads: list[ThreadEntry] = context.parent_accumulated_active_state.open_threads

    return create_page(
        id=context.page_id,
        narrative_text=result.narrative,
        choices=[Choice(text=text) for text in result.choices],
        is_ending=result.is_ending,
        parent_page_id=context.parent_page_id,
        parent_choice_index=context.parent_choice_index,
        inventory_changes=inventory_changes,
        accumulated_inventory=inventory,
        health_changes=health_changes,
        accumulated_health=health,
        character_state_changes=character_changes,
        accumulated_character_state=characters,
        active_state_changes=active_changes,
        accumulated_active_state=active,
        accumulated_structure_state=context.structure_state,
        structure_version_id=context.structure_version_id,
        protagonist_affect=result.protagonist_affect,
        thread_ages=compute_continuation_thread_ages(
            context.parent_thread_ages, parent_threads, active.open_threads
        ),
        accumulated_promises=promises,
        id_high_water=_high_water(floors, inventory, health, characters, active, promises),
    )


def is_page_fully_explored(page: Page) -> bool:
    """True when every choice links to a child page (ending pages trivially)."""
    return all(choice.next_page_id is not None for choice in page.choices)


def get_unexplored_choice_indices(page: Page) -> list[int]:
    return [i for i, choice in enumerate(page.choices) if choice.next_page_id is None]
