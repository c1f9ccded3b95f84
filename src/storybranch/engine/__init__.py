"""Story engine: page building, structure progression and rewrites."""

from storybranch.engine.errors import (
    EngineError,
    EngineErrorCode,
    StructuralInvariantViolation,
    StructureVersionInconsistency,
)
from storybranch.engine.page_builder import (
    ContinuationPageBuildContext,
    FirstPageBuildContext,
    build_continuation_page,
    build_first_page,
    create_empty_structure_context,
    create_page,
    get_unexplored_choice_indices,
    is_page_fully_explored,
)
from storybranch.engine.parsing import (
    FieldError,
    ParseFailure,
    ParseSuccess,
    parse_generated_structure,
    parse_generation_result,
)
from storybranch.engine.protocols import PageGenerator, StructureRewriter
from storybranch.engine.rewrite import (
    CompletedBeat,
    DeviationContext,
    DeviationHandlingResult,
    DeviationInfo,
    PlannedBeat,
    StructureRewriteContext,
    build_rewrite_context,
    extract_completed_beats,
    extract_planned_beats,
    get_preserved_beat_ids,
    handle_deviation,
    merge_preserved_with_regenerated,
    validate_deviation_targets,
    validate_preserved_beats,
)
from storybranch.engine.story_engine import (
    MakeChoiceResult,
    StartStoryResult,
    StoryEngine,
    StoryStats,
)
from storybranch.engine.structure_state import (
    StructureProgressionResult,
    advance_structure_state,
    apply_structure_progression,
    create_initial_structure_state,
    create_story_structure,
    get_current_act,
    get_current_beat,
)
from storybranch.engine.structure_versions import (
    resolve_active_structure_version,
    validate_continuation_structure_version,
    validate_first_page_structure_version,
)

__all__ = [
    "CompletedBeat",
    "ContinuationPageBuildContext",
    "DeviationContext",
    "DeviationHandlingResult",
    "DeviationInfo",
    "EngineError",
    "EngineErrorCode",
    "FieldError",
    "FirstPageBuildContext",
    "MakeChoiceResult",
    "PageGenerator",
    "ParseFailure",
    "ParseSuccess",
    "PlannedBeat",
    "StartStoryResult",
    "StoryEngine",
    "StoryStats",
    "StructuralInvariantViolation",
    "StructureProgressionResult",
    "StructureRewriteContext",
    "StructureRewriter",
    "StructureVersionInconsistency",
    "advance_structure_state",
    "apply_structure_progression",
    "build_continuation_page",
    "build_first_page",
    "build_rewrite_context",
    "create_empty_structure_context",
    "create_initial_structure_state",
    "create_page",
    "create_story_structure",
    "extract_completed_beats",
    "extract_planned_beats",
    "get_current_act",
    "get_current_beat",
    "get_preserved_beat_ids",
    "get_unexplored_choice_indices",
    "handle_deviation",
    "is_page_fully_explored",
    "merge_preserved_with_regenerated",
    "parse_generated_structure",
    "parse_generation_result",
    "resolve_active_structure_version",
    "validate_continuation_structure_version",
    "validate_deviation_targets",
    "validate_first_page_structure_version",
    "validate_preserved_beats",
]
