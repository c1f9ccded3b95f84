"""Tests for page construction."""

from __future__ import annotations

import pytest

from storybranch.engine.errors import StructuralInvariantViolation
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
from storybranch.engine.structure_state import create_initial_structure_state
from storybranch.models.page import Choice, Page
from storybranch.models.state import KeyedEntry, ThreadType, Urgency
from storybranch.models.structure import StoryStructure
from tests.fixtures.story_fixtures import make_result


def _first_page(**overrides) -> Page:
    return build_first_page(make_result(**overrides), create_empty_structure_context())


def _child(parent: Page, page_id: int = 2, choice_index: int = 0, **overrides) -> Page:
    return build_continuation_page(
        make_result(**overrides),
        ContinuationPageBuildContext.from_parent(
            page_id=page_id,
            parent=parent,
            parent_choice_index=choice_index,
            structure_state=parent.accumulated_structure_state,
            structure_version_id=parent.structure_version_id,
        ),
    )


class TestCreatePage:
    """Shape invariants enforced at construction."""

    def test_ending_with_choices_rejected(self) -> None:
        """Ending pages cannot offer choices."""
        with pytest.raises(StructuralInvariantViolation) as exc_info:
            create_page(
                id=1,
                narrative_text="The end.",
                choices=[Choice(text="Again")],
                is_ending=True,
                parent_page_id=None,
                parent_choice_index=None,
            )
        assert exc_info.value.page_id == 1
        assert "ending page has 1 choices" in str(exc_info.value)

    @pytest.mark.parametrize("count", [0, 1, 6])
    def test_non_ending_choice_count(self, count: int) -> None:
        """Non-ending pages offer between two and five choices."""
        with pytest.raises(StructuralInvariantViolation, match="expected 2-5"):
            create_page(
                id=1,
                narrative_text="Text",
                choices=[Choice(text=f"Choice {i}") for i in range(count)],
                is_ending=False,
                parent_page_id=None,
                parent_choice_index=None,
            )

    def test_duplicate_choices_case_insensitive(self) -> None:
        """Choice texts must differ after trimming and case folding."""
        with pytest.raises(StructuralInvariantViolation, match="duplicate choice"):
            create_page(
                id=1,
                narrative_text="Text",
                choices=[Choice(text="Run"), Choice(text=" run ")],
                is_ending=False,
                parent_page_id=None,
                parent_choice_index=None,
            )

    def test_first_page_must_not_have_parent(self) -> None:
        """Test first page with parent raises error."""
        with pytest.raises(StructuralInvariantViolation, match="must not have a parent"):
            create_page(
                id=1,
                narrative_text="Text",
                choices=[Choice(text="A"), Choice(text="B")],
                is_ending=False,
                parent_page_id=1,
                parent_choice_index=0,
            )

    def test_continuation_requires_parent(self) -> None:
        """Test continuation page without parent raises error."""
        with pytest.raises(StructuralInvariantViolation, match="requires parent_page_id"):
            create_page(
                id=2,
                narrative_text="Text",
                choices=[Choice(text="A"), Choice(text="B")],
                is_ending=False,
                parent_page_id=None,
                parent_choice_index=None,
            )

    def test_reports_every_violation(self) -> None:
        """All violations are collected, not just the first."""
        with pytest.raises(StructuralInvariantViolation) as exc_info:
            create_page(
                id=3,
                narrative_text="Text",
                choices=[Choice(text="A")],
                is_ending=True,
                parent_page_id=None,
                parent_choice_index=None,
            )
        assert len(exc_info.value.violations) == 2

    def test_valid_page_trims_choice_text(self) -> None:
        page = create_page(
            id=2,
            narrative_text="Text",
            choices=[Choice(text=" A "), Choice(text="B")],
            is_ending=False,
            parent_page_id=1,
            parent_choice_index=1,
        )
        assert [c.text for c in page.choices] == ["A", "B"]
        assert page.parent_choice_index == 1


class TestBuildFirstPage:
    """Page 1 accumulates from empty state."""

    def test_accumulates_from_empty(self) -> None:
        """The opening page accumulates its own deltas onto empty state."""
        page = _first_page(
            inventory_added=["Lantern", "Letter"],
            health_added=["Tired"],
            current_location="Station platform",
            threads_added=[{"text": "Who wrote the letter?", "threadType": "MYSTERY"}],
            character_state_changes_added=[{"characterName": "Mara", "states": ["Nervous"]}],
        )

        assert page.id == 1
        assert page.parent_page_id is None
        assert page.accumulated_inventory == [
            KeyedEntry(id="inv-1", text="Lantern"),
            KeyedEntry(id="inv-2", text="Letter"),
        ]
        assert page.accumulated_health == [KeyedEntry(id="hp-1", text="Tired")]
        assert page.accumulated_active_state.current_location == "Station platform"
        assert page.accumulated_active_state.open_threads[0].thread_type == ThreadType.MYSTERY
        assert page.thread_ages == {"td-1": 0}
        assert page.accumulated_character_state.characters["mara"][0].id == "cs-1"
        assert page.id_high_water["inv"] == 2
        assert page.id_high_water["pr"] == 0

    def test_removals_on_first_page_ignored(self) -> None:
        """Nothing exists yet, so removals match nothing."""
        page = _first_page(inventory_removed=["inv-1"], inventory_added=["Lantern"])
        assert page.accumulated_inventory == [KeyedEntry(id="inv-1", text="Lantern")]

    def test_structure_context_recorded(self, structure: StoryStructure) -> None:
        """The structure position and version in force are stamped on the page."""
        state = create_initial_structure_state(structure)
        page = build_first_page(
            make_result(),
            FirstPageBuildContext(
                structure_state=state, structure_version_id="sv-0000000000001-abcd"
            ),
        )
        assert page.accumulated_structure_state == state
        assert page.structure_version_id == "sv-0000000000001-abcd"

    def test_ending_first_page(self) -> None:
        page = _first_page(is_ending=True, choices=[])
        assert page.is_ending
        assert page.choices == []


class TestBuildContinuationPage:
    """Children derive state from their parent only."""

    def test_inventory_scenario(self) -> None:
        """Sword and Shield, drop the sword and pick up a bow."""
        parent = _first_page(inventory_added=["Sword", "Shield"])
        child = _child(parent, inventory_added=["Bow"], inventory_removed=["inv-1"])
        assert child.accumulated_inventory == [
            KeyedEntry(id="inv-2", text="Shield"),
            KeyedEntry(id="inv-3", text="Bow"),
        ]
        assert child.inventory_changes.removed == ["inv-1"]

    def test_high_water_survives_removal(self) -> None:
        """An ID removed two pages up is still not reissued."""
        parent = _first_page(inventory_added=["Sword", "Shield"])
        child = _child(parent, inventory_removed=["inv-2"])
        assert child.accumulated_inventory == [KeyedEntry(id="inv-1", text="Sword")]
        assert child.id_high_water["inv"] == 2

        grandchild = _child(child, page_id=3, inventory_added=["Bow"])
        assert grandchild.accumulated_inventory[-1].id == "inv-3"

    def test_siblings_are_isolated(self) -> None:
        """Two children of one parent never see each other's additions."""
        parent = _first_page(inventory_added=["Sword"])
        left = _child(parent, page_id=2, choice_index=0, inventory_added=["Bow"])
        right = _child(parent, page_id=3, choice_index=1, inventory_added=["Rope"])

        assert [e.text for e in left.accumulated_inventory] == ["Sword", "Bow"]
        assert [e.text for e in right.accumulated_inventory] == ["Sword", "Rope"]
        assert left.accumulated_inventory[-1].id == right.accumulated_inventory[-1].id == "inv-2"
        assert [e.text for e in parent.accumulated_inventory] == ["Sword"]

    def test_thread_ages_advance(self) -> None:
        """Surviving threads age on each continuation and resolved ones drop out."""
        parent = _first_page(threads_added=["Who is following?"])
        child = _child(parent, threads_added=[{"text": "Find shelter", "urgency": "HIGH"}])
        assert child.thread_ages == {"td-1": 1, "td-2": 0}
        assert child.accumulated_active_state.open_threads[1].urgency == Urgency.HIGH

        grandchild = _child(child, page_id=3, threads_resolved=["td-1"])
        assert grandchild.thread_ages == {"td-2": 1}

    def test_promises_age_on_continuation(self) -> None:
        """Tracked promises age by one on each continuation."""
        parent = _first_page(
            detected_promises=[{"description": "A sealed door", "promiseType": "CHEKHOV_GUN"}]
        )
        child = _child(parent)
        assert [(p.id, p.age) for p in parent.accumulated_promises] == [("pr-1", 0)]
        assert [(p.id, p.age) for p in child.accumulated_promises] == [("pr-1", 1)]

    def test_location_carries_over(self) -> None:
        parent = _first_page(current_location="Harbor")
        assert _child(parent).accumulated_active_state.current_location == "Harbor"

    def test_parent_linkage(self) -> None:
        parent = _first_page()
        child = _child(parent, page_id=7, choice_index=1)
        assert (child.id, child.parent_page_id, child.parent_choice_index) == (7, 1, 1)

    def test_affect_is_not_accumulated(self) -> None:
        """Protagonist affect is a per-page snapshot and does not carry over."""
        parent = _first_page(protagonist_affect={"primary_emotion": "dread"})
        child = _child(parent)
        assert parent.protagonist_affect.primary_emotion == "dread"
        assert child.protagonist_affect.primary_emotion == "neutral"


class TestExploration:
    """Choice link helpers."""

    def test_unexplored_indices(self) -> None:
        page = _first_page(choices=["A", "B", "C"]).with_choice_link(1, 2)
        assert get_unexplored_choice_indices(page) == [0, 2]
        assert not is_page_fully_explored(page)

    def test_fully_explored(self) -> None:
        page = _first_page().with_choice_link(0, 2).with_choice_link(1, 3)
        assert is_page_fully_explored(page)
        assert get_unexplored_choice_indices(page) == []

    def test_ending_is_fully_explored(self) -> None:
        assert is_page_fully_explored(_first_page(is_ending=True, choices=[]))
