"""Per-branch state accumulation.

Every accumulator derives a child collection from its parent's collection and
a delta: parent entries minus those removed by ID, followed by the newly keyed
additions. Relative order of untouched entries is preserved and inputs are
never mutated.

New IDs continue after ``max(floor, highest parent ID)``. The parent maximum is
taken before removal so that removing the newest entry does not hand its ID to
the next addition. ``floor`` carries the branch high-water mark across pages.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence

from storybranch.models.state import (
    CHARACTER_STATE_PREFIX,
    CONSTRAINT_PREFIX,
    HEALTH_PREFIX,
    INVENTORY_PREFIX,
    THREAD_PREFIX,
    THREAT_PREFIX,
    AccumulatedCharacterState,
    ActiveState,
    ActiveStateChanges,
    CharacterStateChange,
    ConstraintEntry,
    KeyedChanges,
    KeyedEntry,
    ThreadAddition,
    ThreadEntry,
    ThreatEntry,
)
from storybranch.state.keyed_entries import assign_ids, get_max_id_number, remove_by_ids

_PUNCTUATION = re.compile(r"[.,;:!?'\"]")
_WHITESPACE = re.compile(r"\s+")


def normalize_character_name(name: str) -> str:
    """Canonical key for a character name."""
    stripped = _PUNCTUATION.sub("", name.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def _clean(texts: Iterable[str]) -> list[str]:
    return [t.strip() for t in texts if t.strip()]


# ---------------------------------------------------------------------------
# Delta construction
# ---------------------------------------------------------------------------


def create_inventory_changes(added: Iterable[str], removed: Iterable[str]) -> KeyedChanges:
    return KeyedChanges(added=_clean(added), removed=_clean(removed))


def create_health_changes(added: Iterable[str], removed: Iterable[str]) -> KeyedChanges:
    return KeyedChanges(added=_clean(added), removed=_clean(removed))


def create_character_state_changes(
    added: Iterable[tuple[str, Iterable[str]]],
    removed: Iterable[tuple[str, Iterable[str]]],
) -> list[CharacterStateChange]:
    """Group (character name, states) pairs into one change per character.

    Names are matched by their normalized form; the first spelling seen wins.
    Characters left with neither additions nor removals are omitted.
    """
    order: list[str] = []
    names: dict[str, str] = {}
    adds: dict[str, list[str]] = {}
    removes: dict[str, list[str]] = {}

    def _collect(pairs: Iterable[tuple[str, Iterable[str]]], into: dict[str, list[str]]) -> None:
        for name, states in pairs:
            display = name.strip()
            key = normalize_character_name(display)
            if not key:
                continue
            if key not in names:
                names[key] = display
                order.append(key)
            into.setdefault(key, []).extend(_clean(states))

    _collect(added, adds)
    _collect(removed, removes)

    changes = []
    for key in order:
        if not adds.get(key) and not removes.get(key):
            continue
        changes.append(
            CharacterStateChange(
                character_name=names[key],
                added=adds.get(key, []),
                removed=removes.get(key, []),
            )
        )
    return changes


# ---------------------------------------------------------------------------
# Reducers
# ---------------------------------------------------------------------------


def accumulate(
    parent: Sequence[KeyedEntry],
    delta: KeyedChanges,
    prefix: str,
    *,
    floor: int = 0,
) -> list[KeyedEntry]:
    """Generic keyed reducer: ``remove_by_ids(parent, removed)`` plus new entries."""
    seed = max(floor, get_max_id_number(parent, prefix))
    kept = remove_by_ids(parent, delta.removed)
    return kept + assign_ids(kept, delta.added, prefix, floor=seed)


def accumulate_inventory(
    parent: Sequence[KeyedEntry], delta: KeyedChanges, *, floor: int = 0
) -> list[KeyedEntry]:
    return accumulate(parent, delta, INVENTORY_PREFIX, floor=floor)


def accumulate_health(
    parent: Sequence[KeyedEntry], delta: KeyedChanges, *, floor: int = 0
) -> list[KeyedEntry]:
    return accumulate(parent, delta, HEALTH_PREFIX, floor=floor)


def accumulate_character_state(
    parent: AccumulatedCharacterState,
    changes: Sequence[CharacterStateChange],
    *,
    floor: int = 0,
) -> AccumulatedCharacterState:
    """Apply per-character changes.

    All characters share one ``cs`` ID sequence. Removals name entry IDs and
    apply to whichever character holds them; additions are appended to the
    named character. Characters with no remaining entries are dropped.
    """
    current_max = max(floor, get_max_id_number(parent.all_entries(), CHARACTER_STATE_PREFIX))

    removed_ids = [entry_id for change in changes for entry_id in change.removed]
    characters: dict[str, list[KeyedEntry]] = {}
    if removed_ids:
        remaining = remove_by_ids(parent.all_entries(), removed_ids)
        surviving = {entry.id for entry in remaining}
        for key, entries in parent.characters.items():
            characters[key] = [e for e in entries if e.id in surviving]
    else:
        characters = {key: list(entries) for key, entries in parent.characters.items()}

    display_names = dict(parent.display_names)
    for change in changes:
        key = normalize_character_name(change.character_name)
        if not key:
            continue
        new_entries = assign_ids([], change.added, CHARACTER_STATE_PREFIX, floor=current_max)
        if not new_entries:
            continue
        current_max += len(new_entries)
        characters.setdefault(key, []).extend(new_entries)
        display_names.setdefault(key, change.character_name.strip())

    characters = {key: entries for key, entries in characters.items() if entries}
    display_names = {key: name for key, name in display_names.items() if key in characters}
    return AccumulatedCharacterState(characters=characters, display_names=display_names)


def get_character_state(state: AccumulatedCharacterState, name: str) -> list[KeyedEntry]:
    """Entries for *name*, looked up by its normalized form."""
    return list(state.characters.get(normalize_character_name(name), []))


def apply_active_state_changes(
    parent: ActiveState,
    changes: ActiveStateChanges,
    *,
    floors: Mapping[str, int] | None = None,
) -> ActiveState:
    """Apply location, threat, constraint and thread changes.

    Threads added as bare text default to INFORMATION urgency MEDIUM.
    """
    floors = floors or {}

    location = parent.current_location
    if changes.new_location is not None and changes.new_location.strip():
        location = changes.new_location.strip()

    threats = _accumulate_typed(
        parent.active_threats,
        changes.threats_removed,
        [(a.text, {"threat_type": a.threat_type}) for a in changes.threats_added],
        THREAT_PREFIX,
        ThreatEntry,
        floors.get(THREAT_PREFIX, 0),
    )
    constraints = _accumulate_typed(
        parent.active_constraints,
        changes.constraints_removed,
        [(a.text, {"constraint_type": a.constraint_type}) for a in changes.constraints_added],
        CONSTRAINT_PREFIX,
        ConstraintEntry,
        floors.get(CONSTRAINT_PREFIX, 0),
    )

    thread_additions = [
        a if isinstance(a, ThreadAddition) else ThreadAddition(text=a)
        for a in changes.threads_added
    ]
    threads = _accumulate_typed(
        parent.open_threads,
        changes.threads_resolved,
        [(a.text, {"thread_type": a.thread_type, "urgency": a.urgency}) for a in thread_additions],
        THREAD_PREFIX,
        ThreadEntry,
        floors.get(THREAD_PREFIX, 0),
    )

    return ActiveState(
        current_location=location,
        active_threats=threats,
        active_constraints=constraints,
        open_threads=threads,
    )


def _accumulate_typed(parent, removed, additions, prefix, entry_cls, floor):
    """Reducer for entries that carry extra typed fields alongside their text."""
    seed = max(floor, get_max_id_number(parent, prefix))
    kept = remove_by_ids(parent, removed)

    keyed = assign_ids([], [text for text, _ in additions], prefix, floor=seed)
    # assign_ids skips blank texts; pair the survivors with their extra fields
    extras = [fields for text, fields in additions if text.strip()]
    created = [
        entry_cls(id=entry.id, text=entry.text, **fields)
        for entry, fields in zip(keyed, extras, strict=True)
    ]
    return kept + created
