"""Generation payloads exchanged with the page generator and structure rewriter.

Payloads come from an LLM that has already been constrained to a JSON schema,
so field names may arrive camelCased. Every model here accepts both spellings.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from storybranch.models.page import Page, ProtagonistAffect
from storybranch.models.state import (
    ConstraintAddition,
    DetectedPromise,
    ThreadAddition,
    ThreatAddition,
    TrackedPromise,
)
from storybranch.models.story import Story
from storybranch.models.structure import (
    AccumulatedStructureState,
    BeatDeviation,
    DeviationResult,
    NoDeviation,
    StoryStructure,
)

MIN_CHOICES = 2
MAX_CHOICES = 5

_payload_config = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
    extra="ignore",
)


class CharacterStatesPayload(BaseModel):
    """States (texts when added, ``cs-`` IDs when removed) for one character."""

    model_config = _payload_config

    character_name: str = Field(min_length=1)
    states: list[str] = Field(default_factory=list)


class GenerationResult(BaseModel):
    """Validated output of one page generation."""

    model_config = _payload_config

    narrative: str = Field(min_length=1)
    choices: list[str] = Field(default_factory=list)
    is_ending: bool = False

    inventory_added: list[str] = Field(default_factory=list)
    inventory_removed: list[str] = Field(default_factory=list)
    health_added: list[str] = Field(default_factory=list)
    health_removed: list[str] = Field(default_factory=list)
    character_state_changes_added: list[CharacterStatesPayload] = Field(default_factory=list)
    character_state_changes_removed: list[CharacterStatesPayload] = Field(default_factory=list)

    current_location: str = ""
    threats_added: list[ThreatAddition] = Field(default_factory=list)
    threats_removed: list[str] = Field(default_factory=list)
    constraints_added: list[ConstraintAddition] = Field(default_factory=list)
    constraints_removed: list[str] = Field(default_factory=list)
    threads_added: list[ThreadAddition | str] = Field(default_factory=list)
    threads_resolved: list[str] = Field(default_factory=list)

    detected_promises: list[DetectedPromise] = Field(default_factory=list)
    resolved_promise_ids: list[str] = Field(default_factory=list)

    protagonist_affect: ProtagonistAffect = Field(default_factory=ProtagonistAffect)

    beat_concluded: bool = False
    beat_resolution: str = ""
    deviation: DeviationResult = Field(default_factory=NoDeviation)

    @model_validator(mode="before")
    @classmethod
    def _fold_flat_deviation(cls, data: Any) -> Any:
        """Accept ``deviationDetected``/``deviationReason``/... as flat fields."""
        if not isinstance(data, dict) or "deviation" in data:
            return data
        detected = data.get("deviationDetected", data.get("deviation_detected"))
        if detected is None:
            return data
        folded = {
            k: v
            for k, v in data.items()
            if k
            not in {
                "deviationDetected",
                "deviation_detected",
                "deviationReason",
                "deviation_reason",
                "invalidatedBeatIds",
                "invalidated_beat_ids",
                "narrativeSummary",
                "narrative_summary",
            }
        }
        if detected:
            folded["deviation"] = {
                "detected": True,
                "reason": data.get("deviationReason", data.get("deviation_reason", "")),
                "invalidated_beat_ids": data.get(
                    "invalidatedBeatIds", data.get("invalidated_beat_ids", [])
                ),
                "narrative_summary": data.get(
                    "narrativeSummary", data.get("narrative_summary", "")
                ),
            }
        else:
            folded["deviation"] = {"detected": False}
        return folded

    @model_validator(mode="after")
    def _check_choices(self) -> GenerationResult:
        count = len(self.choices)
        if self.is_ending and count > 0:
            raise ValueError("Endings must have zero choices")
        if not self.is_ending and count < MIN_CHOICES:
            raise ValueError(f"Non-endings must have at least {MIN_CHOICES} choices")
        if not self.is_ending and count > MAX_CHOICES:
            raise ValueError(f"Non-endings must have at most {MAX_CHOICES} choices")
        normalized = [choice.strip().lower() for choice in self.choices]
        if len(set(normalized)) != len(normalized):
            raise ValueError("Choices must be unique (case-insensitive)")
        return self

    @property
    def beat_deviation(self) -> BeatDeviation | None:
        return self.deviation if isinstance(self.deviation, BeatDeviation) else None


# ---------------------------------------------------------------------------
# Structure generation
# ---------------------------------------------------------------------------


class GeneratedBeat(BaseModel):
    model_config = _payload_config

    name: str = ""
    description: str = Field(min_length=1)
    objective: str = Field(min_length=1)


class GeneratedAct(BaseModel):
    model_config = _payload_config

    name: str = Field(min_length=1)
    objective: str
    stakes: str
    entry_condition: str
    beats: list[GeneratedBeat] = Field(min_length=1)


class GeneratedStructure(BaseModel):
    """An act/beat plan as produced by the structure generator, without IDs."""

    model_config = _payload_config

    acts: list[GeneratedAct] = Field(min_length=1)
    overall_theme: str = Field(min_length=1)
    premise: str = ""


# ---------------------------------------------------------------------------
# Generator contexts
# ---------------------------------------------------------------------------


class OpeningContext(BaseModel):
    """What the page generator needs to write page 1."""

    model_config = ConfigDict(frozen=True)

    story: Story
    structure: StoryStructure | None = None
    structure_state: AccumulatedStructureState = Field(default_factory=AccumulatedStructureState)


class ContinuationContext(BaseModel):
    """What the page generator needs to continue from one choice.

    ``overdue_thread_ids``, ``aging_promises`` and ``recent_promises`` are
    computed with the configured pacing thresholds.
    """

    model_config = ConfigDict(frozen=True)

    story: Story
    parent_page: Page
    choice_index: int = Field(ge=0)
    choice_text: str
    structure: StoryStructure | None = None
    structure_state: AccumulatedStructureState = Field(default_factory=AccumulatedStructureState)
    overdue_thread_ids: list[str] = Field(default_factory=list)
    aging_promises: list[TrackedPromise] = Field(default_factory=list)
    recent_promises: list[TrackedPromise] = Field(default_factory=list)
