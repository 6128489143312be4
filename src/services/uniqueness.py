from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..db.store import ImportStore, ReferenceStoreUnavailable, StoreError
from ..models.diagnostics import RowDiagnostics, WarningInfo

"""New-animal detection.

Whether a row's animal already exists is decided by the store's identity match
on the natural-key fields (health ID, animal ID, ear tags ...). The answer is
computed against the database as it was before the batch: two rows of the same
upload describing the same new animal are both reported as new.
"""

NEW_ANIMAL_MESSAGE = "This row will create a new animal."


class UniquenessResolver:
    def __init__(self, store: ImportStore) -> None:
        self.store = store

    def is_new_animal(self, data: Mapping[str, Any]) -> bool:
        try:
            return bool(self.store.is_new_animal(data))
        except ReferenceStoreUnavailable:
            raise
        except StoreError as e:
            raise ReferenceStoreUnavailable(f"failed to match animal identity: {e}") from e

    def check(self, data: Mapping[str, Any]) -> RowDiagnostics:
        """Never produces errors; a new animal is the normal first-import case."""
        out = RowDiagnostics()
        if self.is_new_animal(data):
            out.warnings.append(WarningInfo(NEW_ANIMAL_MESSAGE, prompt=True))
        return out
