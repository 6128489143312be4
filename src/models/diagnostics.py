from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

"""Per-row diagnostic models produced by the validation pass.

ValidatedRow is what the preview hands back to the uploader: the normalized
row data, per-field errors and the list of warnings. ``success`` is derived
from the error map so the two can never disagree.
"""

__all__ = [
    "ErrorDescriptor",
    "ErrorKind",
    "MISSING_DATA_KEY",
    "RowDiagnostics",
    "ValidatedRow",
    "WarningInfo",
    "jsonable",
]

# Row-level error key used when structurally required fields are absent
MISSING_DATA_KEY = "missing_data"


class ErrorKind(Enum):
    FIELD_VALIDATION = "FIELD_VALIDATION"  # bad type / unknown code value
    MISSING_REQUIRED_DATA = "MISSING_REQUIRED_DATA"  # structurally incomplete row
    OVERLAP_CONFLICT = "OVERLAP_CONFLICT"  # temporal assignment conflict


@dataclass(frozen=True)
class ErrorDescriptor:
    """User-facing description of one cell (or row) error."""
    desc: str
    help: str
    valid_values: list[str] | None = None
    kind: ErrorKind = ErrorKind.FIELD_VALIDATION

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"desc": self.desc, "help": self.help}
        if self.valid_values is not None:
            out["valid_values"] = list(self.valid_values)
        return out


@dataclass(frozen=True)
class WarningInfo:
    """Non-blocking diagnostic. ``prompt=True`` needs explicit acknowledgement."""
    message: str
    prompt: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "prompt": self.prompt}


@dataclass
class RowDiagnostics:
    """Errors and warnings contributed by one cross-row check."""
    errors: dict[str, ErrorDescriptor] = field(default_factory=dict)
    warnings: list[WarningInfo] = field(default_factory=list)


@dataclass(frozen=True)
class ValidatedRow:
    row_index: int
    data: dict[str, Any]
    errors: dict[str, ErrorDescriptor] = field(default_factory=dict)
    warnings: list[WarningInfo] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def needs_prompt(self) -> bool:
        return any(w.prompt for w in self.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": {k: jsonable(v) for k, v in self.data.items()},
            "errors": {k: e.to_dict() for k, e in self.errors.items()},
            "warnings": [w.to_dict() for w in self.warnings],
            "success": self.success,
        }


def jsonable(value: Any) -> Any:
    """Render dates as ISO strings (calendar dates as YYYY-MM-DD)."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value
