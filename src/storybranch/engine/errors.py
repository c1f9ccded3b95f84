"""Engine error types.

Fatal errors raised by the core (page construction, structure versions,
engine lookups) are exceptions. Recoverable conditions such as unknown IDs
passed for removal are logged and ignored, and parse failures are values
(see :mod:`storybranch.engine.parsing`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class EngineErrorCode(StrEnum):
    STORY_NOT_FOUND = "STORY_NOT_FOUND"
    PAGE_NOT_FOUND = "PAGE_NOT_FOUND"
    INVALID_CHOICE = "INVALID_CHOICE"
    GENERATION_FAILED = "GENERATION_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INVALID_STRUCTURE_VERSION = "INVALID_STRUCTURE_VERSION"
    INVALID_STRUCTURE = "INVALID_STRUCTURE"
    PAGE_CONFLICT = "PAGE_CONFLICT"


@dataclass
class EngineError(Exception):
    """An engine operation could not be completed.

    Attributes:
        message: Human-readable description.
        code: Machine-readable error category.
    """

    message: str
    code: EngineErrorCode

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


@dataclass
class StructureVersionInconsistency(EngineError):
    """A story with a structure has no versions, or a page lost its version link."""

    code: EngineErrorCode = EngineErrorCode.INVALID_STRUCTURE_VERSION


@dataclass
class StructuralInvariantViolation(Exception):
    """A page violates the shape invariants of the page tree.

    Attributes:
        page_id: The page being constructed.
        violations: Every violated invariant, in check order.
    """

    page_id: int
    violations: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        joined = "; ".join(self.violations) or "unknown violation"
        return f"Page {self.page_id} is invalid: {joined}"
