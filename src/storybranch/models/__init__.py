"""Immutable data models for stories, pages, keyed state and structure."""

from storybranch.models.generation import (
    CharacterStatesPayload,
    ContinuationContext,
    GeneratedAct,
    GeneratedBeat,
    GeneratedStructure,
    GenerationResult,
    OpeningContext,
)
from storybranch.models.page import Choice, Page, ProtagonistAffect, SecondaryEmotion
from storybranch.models.state import (
    AccumulatedCharacterState,
    ActiveState,
    ActiveStateChanges,
    CharacterStateChange,
    ConstraintAddition,
    ConstraintEntry,
    ConstraintType,
    DetectedPromise,
    KeyedChanges,
    KeyedEntry,
    PromiseType,
    ThreadAddition,
    ThreadEntry,
    ThreadType,
    ThreatAddition,
    ThreatEntry,
    ThreatType,
    TrackedPromise,
    Urgency,
)
from storybranch.models.story import (
    Story,
    add_structure_version,
    create_story,
    get_latest_structure_version,
    get_structure_version,
)
from storybranch.models.structure import (
    AccumulatedStructureState,
    BeatDeviation,
    BeatProgression,
    NoDeviation,
    StoryAct,
    StoryBeat,
    StoryStructure,
    VersionedStoryStructure,
    create_empty_accumulated_structure_state,
    create_initial_versioned_structure,
    create_rewritten_versioned_structure,
    create_structure_version_id,
    is_deviation,
    is_structure_version_id,
    parse_structure_version_id,
)

__all__ = [
    "AccumulatedCharacterState",
    "AccumulatedStructureState",
    "ActiveState",
    "ActiveStateChanges",
    "BeatDeviation",
    "BeatProgression",
    "CharacterStateChange",
    "CharacterStatesPayload",
    "Choice",
    "ConstraintAddition",
    "ConstraintEntry",
    "ConstraintType",
    "ContinuationContext",
    "DetectedPromise",
    "GeneratedAct",
    "GeneratedBeat",
    "GeneratedStructure",
    "GenerationResult",
    "KeyedChanges",
    "KeyedEntry",
    "NoDeviation",
    "OpeningContext",
    "Page",
    "PromiseType",
    "ProtagonistAffect",
    "SecondaryEmotion",
    "Story",
    "StoryAct",
    "StoryBeat",
    "StoryStructure",
    "ThreadAddition",
    "ThreadEntry",
    "ThreadType",
    "ThreatAddition",
    "ThreatEntry",
    "ThreatType",
    "TrackedPromise",
    "Urgency",
    "VersionedStoryStructure",
    "add_structure_version",
    "create_empty_accumulated_structure_state",
    "create_initial_versioned_structure",
    "create_rewritten_versioned_structure",
    "create_story",
    "create_structure_version_id",
    "get_latest_structure_version",
    "get_structure_version",
    "is_deviation",
    "is_structure_version_id",
    "parse_structure_version_id",
]
