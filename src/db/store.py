from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from src.models.attachment import Attachment
from src.models.bulk_result import UpsertOutcome
from src.models.interval import AssignmentInterval
from src.models.row_data import RowData

"""Storage collaborator interface used by the validation and import services.

Everything the core needs from the database goes through ImportStore, so the
services can be exercised against an in-memory implementation and the SQL stays
in one place (src/db/postgres_store.py).
"""

__all__ = [
    "AttachmentError",
    "ImportStore",
    "ReferenceStoreUnavailable",
    "StoreError",
]


class StoreError(Exception):
    """Base exception for storage failures."""


class ReferenceStoreUnavailable(StoreError):
    """Reference data (codes, column kinds, histories) could not be read.

    Fatal to the whole validation pass: an empty code list would let invalid
    values through.
    """


class AttachmentError(StoreError):
    """Linking one device to one animal failed."""


class ImportStore(Protocol):
    def fetch_code_headers(self) -> list[str]:
        """Names of the fields backed by a code list."""
        ...

    def fetch_code_descriptions(self, domain_key: str) -> Sequence[str]:
        """Allowed descriptions for one code field, in display order."""
        ...

    def fetch_column_kinds(self) -> dict[str, str]:
        """Field -> one of number/date/boolean/string for animal and device columns."""
        ...

    def fetch_device_history(self, device_id: str) -> Sequence[AssignmentInterval]:
        ...

    def fetch_animal_history(self, critter_id: str) -> Sequence[AssignmentInterval]:
        ...

    def is_new_animal(self, row: Mapping[str, Any]) -> bool:
        """True when no stored animal matches the row's identity fields."""
        ...

    def upsert_devices(self, rows: Sequence[RowData]) -> UpsertOutcome:
        ...

    def upsert_animals(self, rows: Sequence[RowData]) -> UpsertOutcome:
        ...

    def upsert_telemetry(self, rows: Sequence[RowData]) -> UpsertOutcome:
        ...

    def link_device_animal(self, attachment: Attachment) -> dict[str, Any]:
        """Create one attachment. Raises AttachmentError on failure."""
        ...
