from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from ..db.store import ImportStore, ReferenceStoreUnavailable, StoreError
from ..models.diagnostics import ErrorDescriptor, ErrorKind, RowDiagnostics, WarningInfo
from ..models.interval import AssignmentInterval, to_utc
from ..models.row_data import key_text

"""Temporal conflict detection for device/animal assignments.

A device may not be attached to two animals at once: an overlap with the
device's history is a hard error on ``device_id``. An animal receiving a second
device over the same span is only flagged with a prompt warning, since
multi-collaring is sometimes legitimate.

Candidate interval of a row: ``[capture_date or now, retrieval_date or
mortality_date or open)``.
"""

logger = logging.getLogger(__name__)

DEVICE_ASSIGNED = ErrorDescriptor(
    desc="This device is already assigned to an animal. Unlink this device and try again.",
    help="This device is already assigned to an animal. Unlink this device and try again.",
    kind=ErrorKind.OVERLAP_CONFLICT,
)
MULTIPLE_DEVICES_MESSAGE = "You will be attaching multiple devices to this animal over the same time span."


def _utcnow() -> datetime:
    return datetime.now(UTC)


class OverlapDetector:
    def __init__(self, store: ImportStore, now: Callable[[], datetime] = _utcnow) -> None:
        self.store = store
        self.now = now

    def candidate_interval(self, data: Mapping[str, Any]) -> AssignmentInterval:
        """Raises ValueError when the end date precedes the start date."""
        start = data.get("capture_date") or self.now()
        end = data.get("retrieval_date") or data.get("mortality_date")
        return AssignmentInterval(
            subject_id=key_text(data["device_id"]),
            start=start,
            end=end,
        )

    def _history(self, fetch: Callable[[str], Any], subject: str, what: str) -> list[AssignmentInterval]:
        try:
            return list(fetch(subject))
        except ReferenceStoreUnavailable:
            raise
        except StoreError as e:
            raise ReferenceStoreUnavailable(f"failed to retrieve {what} assignment history: {e}") from e

    def check(self, data: Mapping[str, Any]) -> RowDiagnostics:
        out = RowDiagnostics()
        if data.get("device_id") is None:
            return out
        try:
            candidate = self.candidate_interval(data)
        except ValueError:
            end_field = "retrieval_date" if data.get("retrieval_date") else "mortality_date"
            out.errors[end_field] = ErrorDescriptor(
                desc="This date is earlier than the capture date.",
                help="A device cannot be retrieved, or an animal die, before the capture date.",
            )
            return out

        device_id = candidate.subject_id
        device_links = self._history(self.store.fetch_device_history, device_id, "device")
        if any(link.overlaps(candidate) for link in device_links):
            logger.debug("device %s overlaps existing assignment", device_id)
            out.errors["device_id"] = DEVICE_ASSIGNED
        elif device_links:
            out.warnings.append(
                WarningInfo(f"There are previous deployments for device ID {device_id}", prompt=False)
            )

        critter_id = data.get("critter_id")
        if critter_id:
            animal_links = self._history(self.store.fetch_animal_history, key_text(critter_id), "animal")
            if any(link.overlaps(candidate) for link in animal_links):
                out.warnings.append(WarningInfo(MULTIPLE_DEVICES_MESSAGE, prompt=True))
        return out
