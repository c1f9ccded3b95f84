"""Keyed-entry store.

IDs have the form ``{prefix}-{n}``. Within one branch's collection for a
category, ``n`` is strictly increasing and never reused, so a removal
instruction always names exactly one entry.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from storybranch.models.state import KeyedEntry
from storybranch.observability import get_logger

log = get_logger(__name__)

_ID_PATTERN = re.compile(r"^[a-z]+-(\d+)$")

E = TypeVar("E", bound=KeyedEntry)


@dataclass
class MalformedIdentifierError(ValueError):
    """Raised when a keyed-entry ID does not match ``{prefix}-{n}``."""

    entry_id: str

    def __post_init__(self) -> None:
        super().__init__(f"Malformed keyed entry ID: {self.entry_id!r}")


def extract_id_number(entry_id: str) -> int:
    """Return the numeric suffix of *entry_id*.

    Raises:
        MalformedIdentifierError: If *entry_id* is not ``{prefix}-{n}``.
    """
    match = _ID_PATTERN.match(entry_id)
    if match is None:
        raise MalformedIdentifierError(entry_id)
    return int(match.group(1))


def get_max_id_number(entries: Iterable[KeyedEntry], prefix: str) -> int:
    """Highest numeric suffix among entries with *prefix*, or 0."""
    marker = f"{prefix}-"
    highest = 0
    for entry in entries:
        if entry.id.startswith(marker):
            highest = max(highest, extract_id_number(entry.id))
    return highest


def next_id(prefix: str, current_max: int) -> str:
    return f"{prefix}-{current_max + 1}"


def assign_ids(
    existing: Sequence[KeyedEntry],
    new_texts: Iterable[str],
    prefix: str,
    *,
    floor: int = 0,
) -> list[KeyedEntry]:
    """Give each non-blank text the next ID after the existing maximum.

    Args:
        existing: Entries already present in the collection.
        new_texts: Texts to key, in order. Blank texts are skipped.
        prefix: Category prefix, e.g. ``"inv"``.
        floor: Lowest number to continue from; lets callers carry a branch
            high-water mark so removed IDs are not issued again.

    Returns:
        Only the newly keyed entries.
    """
    current_max = max(get_max_id_number(existing, prefix), floor)
    created: list[KeyedEntry] = []
    for text in new_texts:
        trimmed = text.strip()
        if not trimmed:
            continue
        current_max += 1
        created.append(KeyedEntry(id=f"{prefix}-{current_max}", text=trimmed))
    return created


def remove_by_ids(entries: Sequence[E], ids: Iterable[str]) -> list[E]:
    """Return *entries* without those whose ID is in *ids*.

    IDs that match nothing are logged and ignored.
    """
    wanted = {entry_id.strip() for entry_id in ids if entry_id.strip()}
    if not wanted:
        return list(entries)

    present = {entry.id for entry in entries}
    for entry_id in sorted(wanted - present):
        log.warning(
            "keyed_entry_removal_unmatched",
            entry_id=entry_id,
            available=sorted(present),
        )

    return [entry for entry in entries if entry.id not in wanted]
