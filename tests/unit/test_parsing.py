"""Tests for generation payload parsing."""

from __future__ import annotations

import json

from storybranch.engine.parsing import (
    ParseFailure,
    ParseSuccess,
    parse_generated_structure,
    parse_generation_result,
)
from storybranch.models.generation import GeneratedStructure
from storybranch.models.state import ThreadAddition, ThreadType
from storybranch.models.structure import BeatDeviation, NoDeviation


class TestParseGenerationResult:
    """Validation of raw page payloads."""

    def test_camel_case_payload(self) -> None:
        """camelCase payload keys map onto the result fields."""
        outcome = parse_generation_result(
            {
                "narrative": "Rain hammers the roof.",
                "choices": ["Climb down", "Wait"],
                "inventoryAdded": ["Rope"],
                "currentLocation": "Attic",
                "threadsAdded": [{"text": "Who locked the hatch?", "threadType": "MYSTERY"}],
                "beatConcluded": True,
                "beatResolution": "Escaped the cellar",
                "protagonistAffect": {"primary_emotion": "fear"},
            }
        )

        assert isinstance(outcome, ParseSuccess)
        assert outcome.ok
        result = outcome.result
        assert result.inventory_added == ["Rope"]
        assert result.current_location == "Attic"
        assert result.threads_added == [
            ThreadAddition(text="Who locked the hatch?", thread_type=ThreadType.MYSTERY)
        ]
        assert result.beat_concluded
        assert isinstance(result.deviation, NoDeviation)
        assert result.beat_deviation is None

    def test_json_document(self) -> None:
        payload = json.dumps({"narrative": "Fin.", "choices": [], "isEnding": True})
        outcome = parse_generation_result(payload)
        assert isinstance(outcome, ParseSuccess)
        assert outcome.result.is_ending

    def test_flat_deviation_fields_folded(self) -> None:
        """Flat deviationDetected/deviationReason keys fold into one deviation."""
        outcome = parse_generation_result(
            {
                "narrative": "You burn the letter.",
                "choices": ["Run", "Hide"],
                "deviationDetected": True,
                "deviationReason": "The letter no longer exists",
                "invalidatedBeatIds": ["2.1", "2.2"],
                "narrativeSummary": "Evidence destroyed",
            }
        )
        assert isinstance(outcome, ParseSuccess)
        deviation = outcome.result.beat_deviation
        assert isinstance(deviation, BeatDeviation)
        assert deviation.invalidated_beat_ids == ["2.1", "2.2"]
        assert deviation.narrative_summary == "Evidence destroyed"

    def test_nested_deviation(self) -> None:
        """A nested deviation object is accepted as well."""
        outcome = parse_generation_result(
            {
                "narrative": "Text",
                "choices": ["A", "B"],
                "deviation": {
                    "detected": True,
                    "reason": "Drift",
                    "invalidatedBeatIds": ["3.1"],
                },
            }
        )
        assert isinstance(outcome, ParseSuccess)
        assert outcome.result.beat_deviation.reason == "Drift"

    def test_flat_no_deviation(self) -> None:
        """deviationDetected=False yields no deviation."""
        outcome = parse_generation_result(
            {"narrative": "Text", "choices": ["A", "B"], "deviationDetected": False}
        )
        assert isinstance(outcome, ParseSuccess)
        assert outcome.result.beat_deviation is None

    def test_every_error_reported(self) -> None:
        """Missing narrative and a bad enum are both listed."""
        outcome = parse_generation_result(
            {
                "choices": ["A", "B"],
                "threatsAdded": [{"text": "Wolves", "threatType": "WEATHER"}],
            }
        )
        assert isinstance(outcome, ParseFailure)
        assert not outcome.ok
        paths = [e.path for e in outcome.errors]
        assert "narrative" in paths
        assert any(path.startswith("threatsAdded.0") for path in paths)
        assert "narrative" in outcome.summary()

    def test_choice_rules_enforced(self) -> None:
        """Choice count, ending and duplicate rules fail the parse."""
        too_few = parse_generation_result({"narrative": "Text", "choices": ["Only"]})
        ending_with_choices = parse_generation_result(
            {"narrative": "Text", "choices": ["A", "B"], "isEnding": True}
        )
        duplicates = parse_generation_result({"narrative": "Text", "choices": ["Go", "GO "]})

        assert isinstance(too_few, ParseFailure)
        assert "at least 2" in too_few.summary()
        assert isinstance(ending_with_choices, ParseFailure)
        assert "zero choices" in ending_with_choices.summary()
        assert isinstance(duplicates, ParseFailure)
        assert "unique" in duplicates.summary()

    def test_invalid_json(self) -> None:
        """Malformed JSON is a parse failure, not an exception."""
        outcome = parse_generation_result("{not json")
        assert isinstance(outcome, ParseFailure)
        assert outcome.errors


class TestParseGeneratedStructure:
    """Validation of raw structure payloads."""

    def test_valid_structure(self) -> None:
        parsed = parse_generated_structure(
            {
                "overallTheme": "Loyalty",
                "acts": [
                    {
                        "name": "Departure",
                        "objective": "Leave",
                        "stakes": "Home",
                        "entryCondition": "Start",
                        "beats": [{"description": "Pack", "objective": "Be ready"}],
                    }
                ],
            }
        )
        assert isinstance(parsed, GeneratedStructure)
        assert parsed.acts[0].entry_condition == "Start"

    def test_act_without_beats_fails(self) -> None:
        """Every regenerated act needs at least one beat."""
        parsed = parse_generated_structure(
            {
                "overallTheme": "Loyalty",
                "acts": [
                    {
                        "name": "Departure",
                        "objective": "Leave",
                        "stakes": "Home",
                        "entryCondition": "Start",
                        "beats": [],
                    }
                ],
            }
        )
        assert isinstance(parsed, ParseFailure)
        assert any(e.path == "acts.0.beats" for e in parsed.errors)
