"""Typed parsing of generation payloads.

Parsing never raises for bad input: callers get either a ``ParseSuccess`` with
the validated result or a ``ParseFailure`` listing every field error.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import ValidationError

from storybranch.models.generation import GeneratedStructure, GenerationResult
from storybranch.observability import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class FieldError:
    """One validation problem, located by a dotted path (``choices.2``)."""

    path: str
    message: str


@dataclass(frozen=True)
class ParseSuccess:
    result: GenerationResult
    ok: Literal[True] = True


@dataclass(frozen=True)
class ParseFailure:
    errors: list[FieldError] = field(default_factory=list)
    ok: Literal[False] = False

    def summary(self) -> str:
        return "; ".join(f"{e.path or '<root>'}: {e.message}" for e in self.errors)


ParseOutcome = ParseSuccess | ParseFailure


def _field_errors(exc: ValidationError) -> list[FieldError]:
    return [
        FieldError(path=".".join(str(part) for part in err["loc"]), message=err["msg"])
        for err in exc.errors()
    ]


def parse_generation_result(payload: Mapping[str, Any] | str | bytes) -> ParseOutcome:
    """Validate a raw generation payload (a mapping or a JSON document)."""
    try:
        if isinstance(payload, str | bytes):
            result = GenerationResult.model_validate_json(payload)
        else:
            result = GenerationResult.model_validate(dict(payload))
    except ValidationError as e:
        failure = ParseFailure(errors=_field_errors(e))
        log.debug("generation_payload_invalid", error_count=len(failure.errors))
        return failure
    return ParseSuccess(result=result)


def parse_generated_structure(
    payload: Mapping[str, Any] | str | bytes,
) -> GeneratedStructure | ParseFailure:
    """Validate a raw structure-generation payload."""
    try:
        if isinstance(payload, str | bytes):
            return GeneratedStructure.model_validate_json(payload)
        return GeneratedStructure.model_validate(dict(payload))
    except ValidationError as e:
        return ParseFailure(errors=_field_errors(e))
