"""Page and choice models.

A page is one node in a story's branching tree. It stores both the delta its
generation produced and the accumulated state of its branch, so any page can
be resumed without replaying its ancestors.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from storybranch.models.state import (
    AccumulatedCharacterState,
    ActiveState,
    ActiveStateChanges,
    CharacterStateChange,
    KeyedChanges,
    KeyedEntry,
    TrackedPromise,
)
from storybranch.models.structure import AccumulatedStructureState

EmotionIntensity = Literal["mild", "moderate", "strong", "overwhelming"]


class Choice(BaseModel):
    """A choice offered on a page; ``next_page_id`` is filled once explored."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    next_page_id: int | None = None


class SecondaryEmotion(BaseModel):
    model_config = ConfigDict(frozen=True)

    emotion: str
    cause: str


class ProtagonistAffect(BaseModel):
    """Emotional snapshot of the protagonist on one page. Never accumulated."""

    model_config = ConfigDict(frozen=True)

    primary_emotion: str = "neutral"
    primary_intensity: EmotionIntensity = "mild"
    primary_cause: str = ""
    secondary_emotions: list[SecondaryEmotion] = Field(default_factory=list)
    dominant_motivation: str = ""


class Page(BaseModel):
    """One generated page with its delta and its branch's accumulated state.

    Attributes:
        thread_ages: Pages each open thread has stayed open on this branch.
        id_high_water: Highest ID number ever issued per category prefix on
            this branch; removal never lowers it.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1)
    narrative_text: str
    choices: list[Choice] = Field(default_factory=list)
    is_ending: bool = False

    inventory_changes: KeyedChanges = Field(default_factory=KeyedChanges)
    accumulated_inventory: list[KeyedEntry] = Field(default_factory=list)
    health_changes: KeyedChanges = Field(default_factory=KeyedChanges)
    accumulated_health: list[KeyedEntry] = Field(default_factory=list)
    character_state_changes: list[CharacterStateChange] = Field(default_factory=list)
    accumulated_character_state: AccumulatedCharacterState = Field(
        default_factory=AccumulatedCharacterState
    )
    active_state_changes: ActiveStateChanges = Field(default_factory=ActiveStateChanges)
    accumulated_active_state: ActiveState = Field(default_factory=ActiveState)
    accumulated_structure_state: AccumulatedStructureState = Field(
        default_factory=AccumulatedStructureState
    )
    structure_version_id: str | None = None
    protagonist_affect: ProtagonistAffect = Field(default_factory=ProtagonistAffect)

    thread_ages: dict[str, int] = Field(default_factory=dict)
    accumulated_promises: list[TrackedPromise] = Field(default_factory=list)
    id_high_water: dict[str, int] = Field(default_factory=dict)

    parent_page_id: int | None = None
    parent_choice_index: int | None = None

    def with_choice_link(self, choice_index: int, next_page_id: int) -> Page:
        """Return a copy whose choice at *choice_index* points to *next_page_id*."""
        choices = list(self.choices)
        choices[choice_index] = choices[choice_index].model_copy(
            update={"next_page_id": next_page_id}
        )
        return self.model_copy(update={"choices": choices})
