"""Branch-isolated keyed state: the keyed-entry store, accumulators and aging."""

from storybranch.state.accumulators import (
    accumulate,
    accumulate_character_state,
    accumulate_health,
    accumulate_inventory,
    apply_active_state_changes,
    create_character_state_changes,
    create_health_changes,
    create_inventory_changes,
    get_character_state,
    normalize_character_name,
)
from storybranch.state.aging import (
    PromiseAgingSplit,
    classify_promises,
    compute_accumulated_promises,
    compute_continuation_thread_ages,
    compute_first_page_thread_ages,
    get_overdue_threads,
    is_thread_overdue,
)
from storybranch.state.keyed_entries import (
    MalformedIdentifierError,
    assign_ids,
    extract_id_number,
    get_max_id_number,
    next_id,
    remove_by_ids,
)

__all__ = [
    "MalformedIdentifierError",
    "PromiseAgingSplit",
    "accumulate",
    "accumulate_character_state",
    "accumulate_health",
    "accumulate_inventory",
    "apply_active_state_changes",
    "assign_ids",
    "classify_promises",
    "compute_accumulated_promises",
    "compute_continuation_thread_ages",
    "compute_first_page_thread_ages",
    "extract_id_number",
    "get_character_state",
    "get_max_id_number",
    "get_overdue_threads",
    "is_thread_overdue",
    "next_id",
    "normalize_character_name",
    "remove_by_ids",
]
