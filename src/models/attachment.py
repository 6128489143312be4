from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .interval import AssignmentInterval, to_utc

"""Device <-> animal attachment written during the final import phase."""

__all__ = [
    "Attachment",
]


@dataclass(frozen=True)
class Attachment:
    """Time-bounded link between a device and an animal.

    The data-life bounds (the part of the attachment considered valid for
    downstream analysis) default to the attachment bounds.
    """
    device_id: str
    critter_id: str
    attachment_start: datetime
    attachment_end: datetime | None = None
    data_life_start: datetime | None = None
    data_life_end: datetime | None = None
    collar_id: str | None = None  # stored device record key, when the store returns one

    def __post_init__(self) -> None:
        start = to_utc(self.attachment_start)
        end = to_utc(self.attachment_end) if self.attachment_end is not None else None
        if end is not None and end < start:
            raise ValueError(f"attachment end {end.isoformat()} precedes start {start.isoformat()}")
        object.__setattr__(self, "attachment_start", start)
        object.__setattr__(self, "attachment_end", end)
        if self.data_life_start is None:
            object.__setattr__(self, "data_life_start", start)
        if self.data_life_end is None:
            object.__setattr__(self, "data_life_end", end)

    @property
    def interval(self) -> AssignmentInterval:
        return AssignmentInterval(self.device_id, self.attachment_start, self.attachment_end)

    def to_params(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "collar_id": self.collar_id,
            "critter_id": self.critter_id,
            "attachment_start": self.attachment_start,
            "attachment_end": self.attachment_end,
            "data_life_start": self.data_life_start,
            "data_life_end": self.data_life_end,
        }
