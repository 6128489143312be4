from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""RowData model and row-kind discrimination for uploaded import rows.

RowData represents a single uploaded row after header mapping and blank
normalization. The row kind is decided once, when the row is parsed, by which
discriminating fields are present; downstream code switches on ``RowData.kind``
instead of re-inspecting the row shape.
"""

__all__ = [
    "ANIMAL_IDENTITY_FIELDS",
    "RowData",
    "RowKind",
    "TELEMETRY_FIELDS",
    "classify_row",
    "is_blank",
    "key_text",
]

# Fields whose presence marks a row as carrying animal metadata
ANIMAL_IDENTITY_FIELDS: tuple[str, ...] = (
    "critter_id",
    "wlh_id",
    "animal_id",
    "species",
    "ear_tag_right_id",
    "ear_tag_left_id",
)

TELEMETRY_FIELDS: tuple[str, ...] = ("device_id", "latitude", "longitude", "acquisition_date")


class RowKind(Enum):
    """Tagged variant of an uploaded row.

    - DEVICE: device metadata only
    - ANIMAL: animal metadata only
    - COMBINED: animal + device metadata (device gets attached to the animal)
    - TELEMETRY: historical telemetry point
    - UNKNOWN: nothing recognisable, never written
    """
    DEVICE = "device"
    ANIMAL = "animal"
    COMBINED = "combined"
    TELEMETRY = "telemetry"
    UNKNOWN = "unknown"


def is_blank(value: Any) -> bool:
    """True for None, NaN/NaT and empty or whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    # NaN / NaT are the only values not equal to themselves
    try:
        return bool(value != value)
    except (TypeError, ValueError):  # pragma: no cover (exotic array-likes)
        return False


def key_text(value: Any) -> str:
    """Canonical text of an identifier cell (12345, 12345.0 and "12345" agree)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str):
        return value.strip()
    return str(value)


def classify_row(values: Mapping[str, Any]) -> RowKind:
    """Discriminate a row by which required fields are present (blank == absent)."""
    present = {k for k, v in values.items() if not is_blank(v)}
    if all(f in present for f in TELEMETRY_FIELDS):
        return RowKind.TELEMETRY
    has_device = "device_id" in present
    has_animal = any(f in present for f in ANIMAL_IDENTITY_FIELDS)
    if has_device and has_animal:
        return RowKind.COMBINED
    if has_device:
        return RowKind.DEVICE
    if has_animal:
        return RowKind.ANIMAL
    return RowKind.UNKNOWN


@dataclass(frozen=True)
class RowData:
    """Logical representation of a single uploaded row.

    ``row_index`` is 0-based over the data rows of the sheet (the header row is
    not counted), which is the index reported back in every diagnostic.
    """
    row_index: int
    values: dict[str, Any]  # Field name -> cell value, header order preserved
    kind: RowKind = RowKind.UNKNOWN
    raw_values: dict[str, Any] | None = field(default=None, compare=False)  # Pre-normalization cells

    @classmethod
    def from_values(cls, row_index: int, values: Mapping[str, Any]) -> RowData:
        values = dict(values)
        return cls(row_index=row_index, values=values, kind=classify_row(values))

    def present_values(self) -> dict[str, Any]:
        """Values with blank cells dropped (a missing optional field is not an error)."""
        return {k: v for k, v in self.values.items() if not is_blank(v)}
