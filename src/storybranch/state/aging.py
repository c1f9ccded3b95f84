"""Thread and promise aging.

An open thread's age is the number of pages it has stayed open on the current
branch. A thread is overdue once its age reaches the threshold for its
urgency. Tracked promises age the same way and are surfaced as "aging" once
they reach the promise notice threshold. All thresholds are inclusive.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from storybranch.config import ThreadPacingConfig
from storybranch.models.state import (
    PROMISE_PREFIX,
    DetectedPromise,
    ThreadEntry,
    TrackedPromise,
)
from storybranch.state.keyed_entries import get_max_id_number, remove_by_ids

DEFAULT_PACING = ThreadPacingConfig()


@dataclass
class PromiseAgingSplit:
    aging: list[TrackedPromise] = field(default_factory=list)
    recent: list[TrackedPromise] = field(default_factory=list)


def is_thread_overdue(
    thread: ThreadEntry, age: int, config: ThreadPacingConfig = DEFAULT_PACING
) -> bool:
    return age >= config.threshold_for(thread.urgency)


def get_overdue_threads(
    threads: Sequence[ThreadEntry],
    ages: Mapping[str, int],
    config: ThreadPacingConfig = DEFAULT_PACING,
) -> list[ThreadEntry]:
    """Threads with a known age at or past their urgency threshold."""
    return [
        thread
        for thread in threads
        if thread.id in ages and is_thread_overdue(thread, ages[thread.id], config)
    ]


def classify_promises(
    promises: Iterable[TrackedPromise], config: ThreadPacingConfig = DEFAULT_PACING
) -> PromiseAgingSplit:
    split = PromiseAgingSplit()
    for promise in promises:
        if promise.age >= config.promise_aging_notice_pages:
            split.aging.append(promise)
        else:
            split.recent.append(promise)
    return split


def compute_first_page_thread_ages(open_threads: Iterable[ThreadEntry]) -> dict[str, int]:
    return {thread.id: 0 for thread in open_threads}


def compute_continuation_thread_ages(
    parent_ages: Mapping[str, int],
    parent_threads: Iterable[ThreadEntry],
    child_threads: Iterable[ThreadEntry],
) -> dict[str, int]:
    """Age threads that survived from the parent; start new threads at 0.

    Resolved threads are absent from *child_threads* and drop out.
    """
    inherited = {thread.id for thread in parent_threads}
    ages: dict[str, int] = {}
    for thread in child_threads:
        if thread.id in inherited:
            ages[thread.id] = parent_ages.get(thread.id, 0) + 1
        else:
            ages[thread.id] = 0
    return ages


def compute_accumulated_promises(
    parent: Sequence[TrackedPromise],
    resolved_ids: Iterable[str],
    detected: Iterable[DetectedPromise],
    *,
    floor: int = 0,
    age_existing: bool = True,
) -> list[TrackedPromise]:
    """Drop resolved promises, age the rest, then append newly detected ones.

    Args:
        parent: Promises tracked on the parent page.
        resolved_ids: ``pr-`` IDs paid off on this page.
        detected: Promises first detected on this page; they start at age 0.
        floor: Branch high-water mark for the ``pr`` prefix.
        age_existing: False on the first page, where nothing is inherited.
    """
    current_max = max(floor, _max_promise_id(parent))

    kept = remove_by_ids(parent, resolved_ids)
    if age_existing:
        kept = [p.model_copy(update={"age": p.age + 1}) for p in kept]

    created = []
    for promise in detected:
        description = promise.description.strip()
        if not description:
            continue
        current_max += 1
        created.append(
            TrackedPromise(
                id=f"{PROMISE_PREFIX}-{current_max}",
                description=description,
                promise_type=promise.promise_type,
                suggested_urgency=promise.suggested_urgency,
                age=0,
            )
        )
    return kept + created


def _max_promise_id(promises: Sequence[TrackedPromise]) -> int:
    return get_max_id_number(promises, PROMISE_PREFIX)  # type: ignore[arg-type]
