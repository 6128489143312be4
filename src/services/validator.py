from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from numbers import Integral, Real
from typing import Any

import numpy as np

from ..models.code_domain import CodeDomain
from ..models.config_models import DEFAULT_REQUIRED_FIELDS
from ..models.diagnostics import MISSING_DATA_KEY, ErrorDescriptor, ErrorKind, ValidatedRow
from ..models.row_data import RowData

"""Per-row field validation.

Each present field is checked according to its declared kind:

- code: the value must exactly match one of the session's CodeDomain values
- date / number / boolean: the value must parse unambiguously into that type
- string: free text, unchecked

Blank cells are dropped first, so a missing optional field is never an error.
When a structurally required field is absent the row gets a single
``missing_data`` error and is not sent to the cross-row checks.
"""

__all__ = [
    "BOOLEAN_TOKENS",
    "RowValidator",
    "parse_boolean",
    "parse_date",
    "parse_number",
]

BOOLEAN_TOKENS = {"TRUE": True, "FALSE": False}

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")

CODE_ERROR = ErrorDescriptor(
    desc="This value is not a valid code for this field.",
    help="This field must contain a value from the list of acceptable values.",
)
DATE_ERROR = ErrorDescriptor(
    desc="This field must be a valid date format.",
    help=(
        "You have incorrectly formatted this date field. One way you can ensure correct "
        "formatting for a cell of this type is to change the Number Format dropdown in Excel."
    ),
)
NUMBER_ERROR = ErrorDescriptor(
    desc="This field must be a numeric value.",
    help=(
        "This field is set to only accept numbers, including integers and floating points. "
        "Ensure you have not included any special characters."
    ),
)
BOOLEAN_ERROR = ErrorDescriptor(desc="Set this field to either TRUE or FALSE.", help="")


def parse_date(value: Any) -> date | None:
    """Cell value -> calendar date, or None when it is not unambiguously a date.

    Accepts real date cells and ISO 8601 text (YYYY-MM-DD, optionally with a time).
    Day/month orderings such as 03/04/2020 are rejected.
    """
    if isinstance(value, datetime):  # pandas Timestamp is a datetime subclass
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return None
    return None


def parse_number(value: Any) -> int | float | None:
    if isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, Integral):
        return int(value)
    if isinstance(value, Real):
        f = float(value)
        if math.isnan(f) or math.isinf(f):
            return None
        return f
    if isinstance(value, str):
        text = value.strip()
        if not _NUMBER_RE.match(text):
            return None
        if re.fullmatch(r"[+-]?\d+", text):
            return int(text)
        return float(text)
    return None


def parse_boolean(value: Any) -> bool | None:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str) and value in BOOLEAN_TOKENS:
        return BOOLEAN_TOKENS[value]
    return None


class RowValidator:
    """Field-level checks against an immutable CodeDomain.

    The validator holds no mutable state, so rows can be validated in any order
    (or in parallel) with identical results.
    """

    def __init__(
        self,
        code_domain: CodeDomain,
        column_kinds: Mapping[str, str] | None = None,
        required_fields: Sequence[str] = DEFAULT_REQUIRED_FIELDS,
        natural_key_fields: Sequence[str] = (),
    ) -> None:
        self.code_domain = code_domain
        self.column_kinds = dict(column_kinds or {})
        self.required_fields = tuple(required_fields)
        self.natural_key_fields = tuple(natural_key_fields)

    def field_kind(self, field_name: str) -> str:
        if field_name in self.code_domain:
            return "code"
        return self.column_kinds.get(field_name, "string")

    def check_field(self, field_name: str, value: Any) -> tuple[Any, ErrorDescriptor | None]:
        """Return (normalized value, error or None) for one present field."""
        kind = self.field_kind(field_name)
        if kind == "code":
            candidate = value if isinstance(value, str) else str(value)
            if self.code_domain.allows(field_name, candidate):
                return candidate, None
            return value, ErrorDescriptor(
                desc=CODE_ERROR.desc,
                help=CODE_ERROR.help,
                valid_values=self.code_domain.valid_values(field_name),
            )
        if kind == "date":
            parsed = parse_date(value)
            return (value, DATE_ERROR) if parsed is None else (parsed, None)
        if kind == "number":
            number = parse_number(value)
            return (value, NUMBER_ERROR) if number is None else (number, None)
        if kind == "boolean":
            flag = parse_boolean(value)
            return (value, BOOLEAN_ERROR) if flag is None else (flag, None)
        if isinstance(value, str):
            return value.strip(), None
        return value, None

    def missing_required(self, present: Mapping[str, Any]) -> list[str]:
        return [f for f in self.required_fields if f not in present]

    def validate(self, row: RowData, check_required: bool = True) -> ValidatedRow:
        present = row.present_values()
        data: dict[str, Any] = {}
        errors: dict[str, ErrorDescriptor] = {}
        for field_name, value in present.items():
            normalized, error = self.check_field(field_name, value)
            data[field_name] = normalized
            if error is not None:
                errors[field_name] = error

        if check_required:
            missing = self.missing_required(present)
            if missing:
                errors[MISSING_DATA_KEY] = ErrorDescriptor(
                    desc="You have not provided sufficient data.",
                    help=f"Every row must include: {', '.join(self.required_fields)}. Missing: {', '.join(missing)}.",
                    kind=ErrorKind.MISSING_REQUIRED_DATA,
                )
            elif self.missing_animal_key(present):
                errors[self.natural_key_fields[0]] = ErrorDescriptor(
                    desc="This device cannot be attached to an animal without an animal identifier.",
                    help=f"Rows with a device must include one of: {', '.join(self.natural_key_fields)}.",
                    kind=ErrorKind.MISSING_REQUIRED_DATA,
                )
        return ValidatedRow(row_index=row.row_index, data=data, errors=errors)

    def missing_animal_key(self, present: Mapping[str, Any]) -> bool:
        """A device row the attach phase could never match to its animal."""
        if not self.natural_key_fields or "device_id" not in present:
            return False
        return not any(k in present for k in self.natural_key_fields)
