"""Tests for keyed-entry ID assignment and removal."""

from __future__ import annotations

import pytest

from storybranch.models.state import KeyedEntry
from storybranch.state.keyed_entries import (
    MalformedIdentifierError,
    assign_ids,
    extract_id_number,
    get_max_id_number,
    next_id,
    remove_by_ids,
)


def _entries(*pairs: tuple[str, str]) -> list[KeyedEntry]:
    return [KeyedEntry(id=entry_id, text=text) for entry_id, text in pairs]


class TestExtractIdNumber:
    """Parsing of ``{prefix}-{n}`` identifiers."""

    def test_extracts_suffix(self) -> None:
        """Numeric suffix is returned as an int."""
        assert extract_id_number("inv-12") == 12
        assert extract_id_number("td-1") == 1

    @pytest.mark.parametrize("bad", ["inv", "inv-", "inv-x", "-3", "INV-3", "inv-3-4", ""])
    def test_malformed_raises(self, bad: str) -> None:
        """Anything that is not prefix-number raises."""
        with pytest.raises(MalformedIdentifierError) as exc_info:
            extract_id_number(bad)
        assert exc_info.value.entry_id == bad
        assert isinstance(exc_info.value, ValueError)


class TestGetMaxIdNumber:
    """Highest ID per prefix."""

    def test_empty_is_zero(self) -> None:
        """No entries means zero."""
        assert get_max_id_number([], "inv") == 0

    def test_only_matching_prefix_counts(self) -> None:
        """Entries with another prefix are ignored."""
        entries = _entries(("inv-2", "Rope"), ("hp-9", "Bruised"), ("inv-5", "Lamp"))
        assert get_max_id_number(entries, "inv") == 5
        assert get_max_id_number(entries, "hp") == 9
        assert get_max_id_number(entries, "cs") == 0

    def test_similar_prefix_not_confused(self) -> None:
        """``th-`` entries do not count toward ``t`` or ``thx``."""
        entries = _entries(("th-4", "Wolf"))
        assert get_max_id_number(entries, "t") == 0
        assert get_max_id_number(entries, "th") == 4


class TestAssignIds:
    """Sequential ID assignment."""

    def test_continues_after_existing_max(self) -> None:
        """New IDs follow the highest existing number, not the count."""
        existing = _entries(("inv-1", "Sword"), ("inv-4", "Shield"))
        created = assign_ids(existing, ["Bow", "Arrow"], "inv")
        assert [e.id for e in created] == ["inv-5", "inv-6"]
        assert [e.text for e in created] == ["Bow", "Arrow"]

    def test_first_id_is_one(self) -> None:
        """An empty collection starts at 1."""
        created = assign_ids([], ["Bandage"], "hp")
        assert created == [KeyedEntry(id="hp-1", text="Bandage")]

    def test_floor_wins_over_lower_max(self) -> None:
        """A high-water floor keeps removed numbers from being reissued."""
        existing = _entries(("inv-2", "Shield"))
        created = assign_ids(existing, ["Bow"], "inv", floor=7)
        assert created[0].id == "inv-8"

    def test_blank_texts_skipped_and_trimmed(self) -> None:
        """Blank additions consume no ID; others are trimmed."""
        created = assign_ids([], ["  Torch ", "", "   ", "Map"], "inv")
        assert [(e.id, e.text) for e in created] == [("inv-1", "Torch"), ("inv-2", "Map")]

    def test_does_not_mutate_existing(self) -> None:
        """Only the new entries are returned."""
        existing = _entries(("inv-1", "Sword"))
        assign_ids(existing, ["Bow"], "inv")
        assert existing == _entries(("inv-1", "Sword"))

    def test_next_id(self) -> None:
        assert next_id("td", 3) == "td-4"


class TestRemoveByIds:
    """Removal by exact ID match."""

    def test_removes_matching_preserves_order(self) -> None:
        """Untouched entries keep their relative order."""
        entries = _entries(("inv-1", "A"), ("inv-2", "B"), ("inv-3", "C"))
        assert [e.id for e in remove_by_ids(entries, ["inv-2"])] == ["inv-1", "inv-3"]

    def test_text_match_does_not_remove(self) -> None:
        """Removal is by ID only; a text that happens to match is ignored."""
        entries = _entries(("inv-1", "Sword"))
        assert remove_by_ids(entries, ["Sword"]) == entries

    def test_unmatched_id_logged(self, events) -> None:
        """Unknown IDs are logged as warnings and otherwise ignored."""
        entries = _entries(("inv-1", "Sword"))
        result = remove_by_ids(entries, ["inv-9"])

        assert result == entries
        warnings = events("keyed_entry_removal_unmatched")
        assert len(warnings) == 1
        assert warnings[0]["entry_id"] == "inv-9"
        assert warnings[0]["available"] == ["inv-1"]

    def test_empty_removal_returns_copy(self) -> None:
        """No IDs returns an equal, distinct list."""
        entries = _entries(("inv-1", "Sword"))
        result = remove_by_ids(entries, ["", "  "])
        assert result == entries
        assert result is not entries
