"""Error taxonomy for family graph operations.

The engine raises these; the HTTP layer maps them to status codes in
``main.py``.  None of them is ever retried internally.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class FamilyLineError(Exception):
    """Base class for every error the family graph surfaces to callers."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(FamilyLineError):
    """A referenced person, FamilyLine or edge does not exist."""


class Conflict(FamilyLineError):
    """The edge already exists, or a document changed under us."""


class InvalidRequest(FamilyLineError):
    """The request is well-formed but semantically invalid."""


class InvalidNetworkType(InvalidRequest):
    def __init__(self, network: str, known: list[str]) -> None:
        super().__init__(
            f"Unknown network type {network!r}; expected one of: {', '.join(known)}"
        )
        self.network = network
        self.known = known


class StoreUnavailable(FamilyLineError):
    """Storage/transport failure.

    ``maybe_applied`` is True when the statement reached the server, so the
    write may have landed even though we never saw it commit.
    """

    def __init__(self, message: str, *, maybe_applied: bool = False) -> None:
        super().__init__(message)
        self.maybe_applied = maybe_applied


# ---------------------------------------------------------------------------
# Two-document outcomes
# ---------------------------------------------------------------------------


class WriteOutcome(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    UNKNOWN = "unknown"
    # No write was needed (the side already matched).
    SKIPPED = "skipped"
    # An earlier step failed, so this side was never written.
    NOT_ATTEMPTED = "not_attempted"


@dataclass
class SideResult:
    """Result of writing one side of a two-document operation."""

    side: str  # "owner" or "target"
    person_id: str
    family_line_id: Any
    outcome: WriteOutcome
    error: Optional[FamilyLineError] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": self.side,
            "person_id": self.person_id,
            "family_line_id": self.family_line_id,
            "outcome": self.outcome.value,
            "error": self.error.message if self.error else None,
        }


class PartiallyApplied(FamilyLineError):
    """One document of a two-document operation changed and the other did not
    (or may not have).  Needs reconciliation; never treat as success."""

    def __init__(self, operation: str, sides: list[SideResult]) -> None:
        applied = [s.side for s in sides if s.outcome is WriteOutcome.APPLIED]
        pending = [
            s.side for s in sides if s.outcome not in (WriteOutcome.APPLIED, WriteOutcome.SKIPPED)
        ]
        super().__init__(
            f"{operation} partially applied: applied on {', '.join(applied) or 'no side'}, "
            f"not confirmed on {', '.join(pending)}"
        )
        self.operation = operation
        self.sides = sides

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "partially_applied": True,
            "sides": [s.to_dict() for s in self.sides],
        }
