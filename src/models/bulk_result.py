from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .diagnostics import jsonable

"""Bulk import result models.

BulkResult is built once per orchestrator run and serialized verbatim to the
caller: an empty ``errors`` list means the whole batch went through. Every
error entry carries the 0-based row index and a denormalized copy of the
offending row, never just an opaque identifier.
"""

__all__ = [
    "BATCH_ROWNUM",
    "BulkError",
    "BulkResult",
    "UpsertOutcome",
]

# rownum used for batch-level failures where no single row is to blame
BATCH_ROWNUM = -1


@dataclass(frozen=True)
class BulkError:
    rownum: int  # 0-based row index, -1 for batch-level errors
    row: dict[str, Any]  # copy of the offending row
    error: str

    @classmethod
    def for_row(cls, rownum: int, row: Mapping[str, Any] | None, error: str) -> BulkError:
        return cls(rownum=rownum, row={k: jsonable(v) for k, v in (row or {}).items()}, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {"rownum": self.rownum, "row": dict(self.row), "error": self.error}


@dataclass(frozen=True)
class UpsertOutcome:
    """What a single store-level bulk upsert returns (one phase worth of rows)."""
    results: list[dict[str, Any]] = field(default_factory=list)
    errors: list[BulkError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class BulkResult:
    """Aggregated outcome of a bulk import run."""
    results: list[dict[str, Any]] = field(default_factory=list)
    errors: list[BulkError] = field(default_factory=list)
    summary: list[str] = field(default_factory=list)  # one line per completed phase

    @property
    def success(self) -> bool:
        return not self.errors

    @classmethod
    def from_outcome(cls, outcome: UpsertOutcome) -> BulkResult:
        return cls(results=list(outcome.results), errors=list(outcome.errors))

    @classmethod
    def batch_failure(cls, message: str) -> BulkResult:
        return cls(errors=[BulkError.for_row(BATCH_ROWNUM, None, message)])

    def error_rows(self) -> list[int]:
        return sorted(e.rownum for e in self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "errors": [e.to_dict() for e in self.errors],
            "results": [{k: jsonable(v) for k, v in r.items()} for r in self.results],
            "summary": list(self.summary),
        }
