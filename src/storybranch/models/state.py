"""Keyed narrative state models.

Every mutable narrative fact carried by a page (inventory, health, per-character
state, threats, constraints, open threads, tracked promises) is a keyed entry:
a text with a server-assigned sequential ID such as ``inv-3`` or ``td-12``.
Deltas reference entries for removal by those IDs only.

Models are frozen; accumulation always builds new lists and dicts.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# ID prefixes
# ---------------------------------------------------------------------------

StateIdPrefix = Literal["inv", "hp", "cs", "th", "cn", "td", "pr"]

INVENTORY_PREFIX: Final = "inv"
HEALTH_PREFIX: Final = "hp"
CHARACTER_STATE_PREFIX: Final = "cs"
THREAT_PREFIX: Final = "th"
CONSTRAINT_PREFIX: Final = "cn"
THREAD_PREFIX: Final = "td"
PROMISE_PREFIX: Final = "pr"

ALL_PREFIXES: Final[tuple[StateIdPrefix, ...]] = (
    INVENTORY_PREFIX,
    HEALTH_PREFIX,
    CHARACTER_STATE_PREFIX,
    THREAT_PREFIX,
    CONSTRAINT_PREFIX,
    THREAD_PREFIX,
    PROMISE_PREFIX,
)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ThreadType(StrEnum):
    MYSTERY = "MYSTERY"
    QUEST = "QUEST"
    RELATIONSHIP = "RELATIONSHIP"
    DANGER = "DANGER"
    INFORMATION = "INFORMATION"
    RESOURCE = "RESOURCE"
    MORAL = "MORAL"


class Urgency(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ThreatType(StrEnum):
    HOSTILE_AGENT = "HOSTILE_AGENT"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    CREATURE = "CREATURE"


class ConstraintType(StrEnum):
    PHYSICAL = "PHYSICAL"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    TEMPORAL = "TEMPORAL"


class PromiseType(StrEnum):
    CHEKHOV_GUN = "CHEKHOV_GUN"
    FORESHADOWING = "FORESHADOWING"
    DRAMATIC_IRONY = "DRAMATIC_IRONY"
    UNRESOLVED_EMOTION = "UNRESOLVED_EMOTION"
    SETUP_PAYOFF = "SETUP_PAYOFF"


# ---------------------------------------------------------------------------
# Keyed entries
# ---------------------------------------------------------------------------


class KeyedEntry(BaseModel):
    """A narrative fact with a stable, removable identity."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    text: str


class ThreatEntry(KeyedEntry):
    threat_type: ThreatType


class ConstraintEntry(KeyedEntry):
    constraint_type: ConstraintType


class ThreadEntry(KeyedEntry):
    """An open narrative hook with a type and an urgency."""

    thread_type: ThreadType
    urgency: Urgency


class TrackedPromise(BaseModel):
    """Implicit foreshadowing that has not (yet) been turned into a thread.

    ``age`` counts pages since the promise was first detected on this branch.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    description: str
    promise_type: PromiseType
    suggested_urgency: Urgency = Urgency.MEDIUM
    age: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Deltas
# ---------------------------------------------------------------------------

# Addition payloads come from generated JSON and may be camelCased.
_DELTA_CONFIG = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class KeyedChanges(BaseModel):
    """Additions (texts) and removals (entry IDs) for one category."""

    model_config = ConfigDict(frozen=True)

    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class CharacterStateChange(BaseModel):
    """State changes for one character.

    ``added`` holds new state texts; ``removed`` holds ``cs-`` entry IDs.
    """

    model_config = ConfigDict(frozen=True)

    character_name: str = Field(min_length=1)
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class ThreatAddition(BaseModel):
    model_config = _DELTA_CONFIG

    text: str
    threat_type: ThreatType


class ConstraintAddition(BaseModel):
    model_config = _DELTA_CONFIG

    text: str
    constraint_type: ConstraintType


class ThreadAddition(BaseModel):
    model_config = _DELTA_CONFIG

    text: str
    thread_type: ThreadType = ThreadType.INFORMATION
    urgency: Urgency = Urgency.MEDIUM


class DetectedPromise(BaseModel):
    """A promise newly detected in generated prose."""

    model_config = _DELTA_CONFIG

    description: str
    promise_type: PromiseType
    suggested_urgency: Urgency = Urgency.MEDIUM


class ActiveStateChanges(BaseModel):
    """Delta for the "true right now" state: location, threats, constraints, threads."""

    model_config = ConfigDict(frozen=True)

    new_location: str | None = None
    threats_added: list[ThreatAddition] = Field(default_factory=list)
    threats_removed: list[str] = Field(default_factory=list)
    constraints_added: list[ConstraintAddition] = Field(default_factory=list)
    constraints_removed: list[str] = Field(default_factory=list)
    threads_added: list[ThreadAddition | str] = Field(default_factory=list)
    threads_resolved: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Accumulated state
# ---------------------------------------------------------------------------


class ActiveState(BaseModel):
    """Accumulated active state of one page."""

    model_config = ConfigDict(frozen=True)

    current_location: str = ""
    active_threats: list[ThreatEntry] = Field(default_factory=list)
    active_constraints: list[ConstraintEntry] = Field(default_factory=list)
    open_threads: list[ThreadEntry] = Field(default_factory=list)


class AccumulatedCharacterState(BaseModel):
    """Per-character keyed state of one branch.

    Keys of ``characters`` are normalized character names (see
    :func:`storybranch.state.accumulators.normalize_character_name`).
    ``display_names`` keeps the first-seen spelling for presentation.
    """

    model_config = ConfigDict(frozen=True)

    characters: dict[str, list[KeyedEntry]] = Field(default_factory=dict)
    display_names: dict[str, str] = Field(default_factory=dict)

    def all_entries(self) -> list[KeyedEntry]:
        """All entries across characters, in key order."""
        return [entry for entries in self.characters.values() for entry in entries]
