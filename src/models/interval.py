from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

"""Assignment intervals between a device and an animal.

Intervals are half-open: ``[start, end)``. A missing end means the assignment
is still ongoing. Two intervals overlap iff each one starts before the other
ends, so intervals that only share a boundary point never overlap.
"""

__all__ = [
    "AssignmentInterval",
    "intervals_overlap",
    "to_utc",
]


def to_utc(value: Any) -> datetime:
    """Coerce a date/datetime (or pandas Timestamp) into an aware UTC datetime.

    Calendar dates become midnight UTC; naive datetimes are taken as UTC.
    """
    if hasattr(value, "to_pydatetime"):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, str):
        return to_utc(datetime.fromisoformat(value))
    raise TypeError(f"not a date or datetime: {value!r}")


@dataclass(frozen=True)
class AssignmentInterval:
    """Historical (or candidate) device/animal assignment span."""
    subject_id: str  # device id or critter id the history belongs to
    start: datetime
    end: datetime | None = None  # None = open-ended / ongoing

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", to_utc(self.start))
        if self.end is not None:
            object.__setattr__(self, "end", to_utc(self.end))
            if self.end < self.start:
                raise ValueError(
                    f"interval end {self.end.isoformat()} precedes start {self.start.isoformat()}"
                )

    @property
    def is_open(self) -> bool:
        return self.end is None

    def overlaps(self, other: AssignmentInterval) -> bool:
        return intervals_overlap(self, other)


def intervals_overlap(a: AssignmentInterval, b: AssignmentInterval) -> bool:
    """``a.start < (b.end or +inf) and b.start < (a.end or +inf)``."""
    a_starts_before_b_ends = b.end is None or a.start < b.end
    b_starts_before_a_ends = a.end is None or b.start < a.end
    return a_starts_before_b_ends and b_starts_before_a_ends
