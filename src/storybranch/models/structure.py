"""Story structure models: acts, beats, per-branch progression, versions.

A story's dramatic plan is a list of acts, each holding an ordered list of
beats. Beat IDs are hierarchical strings ("2.1" is the first beat of the second
act) and are stable across structure rewrites for every concluded beat.

Each page carries its own :class:`AccumulatedStructureState` snapshot, which
is what makes progression branch-isolated.
"""

from __future__ import annotations

import re
import secrets
import time
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


class StoryBeat(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = ""
    description: str
    objective: str


class StoryAct(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    objective: str
    stakes: str
    entry_condition: str
    beats: list[StoryBeat] = Field(default_factory=list)


class StoryStructure(BaseModel):
    """The full act/beat plan of a story."""

    model_config = ConfigDict(frozen=True)

    acts: list[StoryAct] = Field(min_length=1)
    overall_theme: str
    premise: str = ""
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def all_beats(self) -> list[StoryBeat]:
        """Every beat, in act then beat order."""
        return [beat for act in self.acts for beat in act.beats]


# ---------------------------------------------------------------------------
# Progression
# ---------------------------------------------------------------------------

BeatStatus = Literal["pending", "active", "concluded"]


class BeatProgression(BaseModel):
    model_config = ConfigDict(frozen=True)

    beat_id: str = Field(min_length=1)
    status: BeatStatus
    resolution: str | None = None


class AccumulatedStructureState(BaseModel):
    """Structural position of one page on its branch."""

    model_config = ConfigDict(frozen=True)

    current_act_index: int = Field(default=0, ge=0)
    current_beat_index: int = Field(default=0, ge=0)
    beat_progressions: list[BeatProgression] = Field(default_factory=list)

    def progression_for(self, beat_id: str) -> BeatProgression | None:
        for progression in self.beat_progressions:
            if progression.beat_id == beat_id:
                return progression
        return None

    def concluded_beat_ids(self) -> list[str]:
        return [p.beat_id for p in self.beat_progressions if p.status == "concluded"]


def create_empty_accumulated_structure_state() -> AccumulatedStructureState:
    """Structure state for stories without a structure."""
    return AccumulatedStructureState()


# ---------------------------------------------------------------------------
# Deviation
# ---------------------------------------------------------------------------


class NoDeviation(BaseModel):
    model_config = ConfigDict(frozen=True)

    detected: Literal[False] = False


class BeatDeviation(BaseModel):
    """Generated narrative no longer fits the planned beats.

    Attributes:
        reason: Why the remaining plan no longer fits.
        invalidated_beat_ids: Beats that must be regenerated (never empty).
        narrative_summary: Summary of where the story actually is.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    detected: Literal[True] = True
    reason: str = Field(min_length=1)
    invalidated_beat_ids: list[str] = Field(min_length=1)
    narrative_summary: str = ""


DeviationResult = NoDeviation | BeatDeviation


def is_deviation(value: NoDeviation | BeatDeviation | None) -> bool:
    """True when *value* is a detected beat deviation."""
    return isinstance(value, BeatDeviation)


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------

STRUCTURE_VERSION_ID_PATTERN = re.compile(r"^sv-\d{13}-[0-9a-f]{4}$")

_last_version_timestamp = 0
_version_sequence = secrets.randbits(16)


def create_structure_version_id() -> str:
    """Return a new ``sv-{epoch ms}-{4 hex}`` version ID.

    IDs created within the same millisecond get consecutive sequence values.
    """
    global _last_version_timestamp, _version_sequence

    now = int(time.time() * 1000)
    if now == _last_version_timestamp:
        _version_sequence = (_version_sequence + 1) & 0xFFFF
    else:
        _last_version_timestamp = now
        _version_sequence = secrets.randbits(16)

    return f"sv-{now:013d}-{_version_sequence:04x}"


def is_structure_version_id(value: object) -> bool:
    return isinstance(value, str) and STRUCTURE_VERSION_ID_PATTERN.match(value) is not None


def parse_structure_version_id(value: str) -> str:
    """Validate and return a structure version ID.

    Raises:
        ValueError: If *value* is not a well-formed version ID.
    """
    if not is_structure_version_id(value):
        raise ValueError(f"Invalid structure version id: {value}")
    return value


class VersionedStoryStructure(BaseModel):
    """An immutable snapshot of the act/beat plan.

    The initial version has no predecessor; every rewrite links back to the
    version it replaced and lists the beat IDs it carried over unchanged.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(pattern=STRUCTURE_VERSION_ID_PATTERN.pattern)
    structure: StoryStructure
    previous_version_id: str | None = None
    created_at_page_id: int | None = None
    rewrite_reason: str | None = None
    preserved_beat_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def create_initial_versioned_structure(structure: StoryStructure) -> VersionedStoryStructure:
    return VersionedStoryStructure(
        id=create_structure_version_id(),
        structure=structure,
        previous_version_id=None,
        created_at_page_id=None,
        rewrite_reason=None,
        preserved_beat_ids=[],
    )


def create_rewritten_versioned_structure(
    previous_version: VersionedStoryStructure,
    new_structure: StoryStructure,
    preserved_beat_ids: list[str],
    rewrite_reason: str,
    created_at_page_id: int,
) -> VersionedStoryStructure:
    return VersionedStoryStructure(
        id=create_structure_version_id(),
        structure=new_structure,
        previous_version_id=previous_version.id,
        created_at_page_id=created_at_page_id,
        rewrite_reason=rewrite_reason,
        preserved_beat_ids=list(preserved_beat_ids),
    )
