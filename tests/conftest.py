# Shared pytest fixtures
from __future__ import annotations

import tempfile
import threading
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from src.db.store import AttachmentError, ReferenceStoreUnavailable, StoreError
from src.models.attachment import Attachment
from src.models.bulk_result import BulkError, UpsertOutcome
from src.models.interval import AssignmentInterval
from src.models.row_data import RowData, key_text

FIXED_NOW = datetime(2024, 6, 1, tzinfo=UTC)


class FakeStore:
    """In-memory ImportStore.

    Stored devices get ``collar_id = "c-<device_id>"`` and stored animals get
    ``critter_id = "a-<wlh_id or animal_id>"``. Failures are injected per key.
    """

    def __init__(
        self,
        code_headers: Sequence[str] = ("sex", "animal_status"),
        codes: Mapping[str, Sequence[str]] | None = None,
        column_kinds: Mapping[str, str] | None = None,
    ) -> None:
        self.code_headers = list(code_headers)
        self.codes = {
            "sex": ["Male", "Female", "Unknown"],
            "animal_status": ["Alive", "Mortality"],
            "species": ["Caribou", "Grizzly Bear", "Moose"],
        }
        if codes is not None:
            self.codes.update({k: list(v) for k, v in codes.items()})
        self.column_kinds = dict(
            column_kinds
            if column_kinds is not None
            else {
                "capture_date": "date",
                "retrieval_date": "date",
                "mortality_date": "date",
                "frequency": "number",
                "latitude": "number",
                "longitude": "number",
                "device_id": "number",
                "juvenile_at_heel": "boolean",
            }
        )
        self.device_history: dict[str, list[AssignmentInterval]] = {}
        self.animal_history: dict[str, list[AssignmentInterval]] = {}
        self.existing_animals: set[str] = set()

        # failure injection
        self.unavailable = False
        self.history_unavailable = False
        self.device_errors: dict[str, str] = {}
        self.animal_errors: dict[str, str] = {}
        self.link_errors: dict[str, str] = {}
        self.device_phase_error: str | None = None
        self.omit_collar_for: set[str] = set()

        # call records
        self._lock = threading.Lock()
        self.code_lookups: list[str] = []
        self.upserted_devices: list[RowData] = []
        self.upserted_animals: list[RowData] = []
        self.upserted_telemetry: list[RowData] = []
        self.links: list[Attachment] = []
        self.link_threads: set[str] = set()

    # reference data -----------------------------------------------------
    def fetch_code_headers(self) -> list[str]:
        if self.unavailable:
            raise ReferenceStoreUnavailable("code_header lookup failed")
        return list(self.code_headers)

    def fetch_code_descriptions(self, domain_key: str) -> list[str]:
        self.code_lookups.append(domain_key)
        if self.unavailable:
            raise StoreError(f"get_code failed for {domain_key}")
        return list(self.codes.get(domain_key, []))

    def fetch_column_kinds(self) -> dict[str, str]:
        return dict(self.column_kinds)

    def fetch_device_history(self, device_id: str) -> list[AssignmentInterval]:
        if self.history_unavailable:
            raise StoreError("history lookup failed")
        return list(self.device_history.get(device_id, []))

    def fetch_animal_history(self, critter_id: str) -> list[AssignmentInterval]:
        if self.history_unavailable:
            raise StoreError("history lookup failed")
        return list(self.animal_history.get(critter_id, []))

    def is_new_animal(self, row: Mapping[str, Any]) -> bool:
        keys = {key_text(row[k]) for k in ("wlh_id", "animal_id") if row.get(k) is not None}
        return not (keys & self.existing_animals)

    # writes --------------------------------------------------------------
    def upsert_devices(self, rows: Sequence[RowData]) -> UpsertOutcome:
        if self.device_phase_error is not None:
            raise StoreError(self.device_phase_error)
        errors = [
            BulkError.for_row(r.row_index, r.values, self.device_errors[key_text(r.values["device_id"])])
            for r in rows
            if key_text(r.values["device_id"]) in self.device_errors
        ]
        if errors:
            return UpsertOutcome(errors=errors)
        self.upserted_devices.extend(rows)
        results = []
        for r in rows:
            device_id = key_text(r.values["device_id"])
            record: dict[str, Any] = {"device_id": r.values["device_id"]}
            if device_id not in self.omit_collar_for:
                record["collar_id"] = f"c-{device_id}"
            results.append(record)
        # stored order differs from input order
        return UpsertOutcome(results=list(reversed(results)))

    def upsert_animals(self, rows: Sequence[RowData]) -> UpsertOutcome:
        errors = [
            BulkError.for_row(r.row_index, r.values, self.animal_errors[key_text(r.values.get("animal_id", ""))])
            for r in rows
            if key_text(r.values.get("animal_id", "")) in self.animal_errors
        ]
        if errors:
            return UpsertOutcome(errors=errors)
        self.upserted_animals.extend(rows)
        results = []
        for r in rows:
            ident = r.values.get("wlh_id") or r.values.get("animal_id")
            results.append(
                {
                    "critter_id": f"a-{key_text(ident)}",
                    "wlh_id": r.values.get("wlh_id"),
                    "animal_id": r.values.get("animal_id"),
                    "capture_date": r.values.get("capture_date"),
                }
            )
        return UpsertOutcome(results=list(reversed(results)))

    def upsert_telemetry(self, rows: Sequence[RowData]) -> UpsertOutcome:
        self.upserted_telemetry.extend(rows)
        return UpsertOutcome(results=[{"success": f"{len(rows)} telemetry points were successfully added"}])

    def link_device_animal(self, attachment: Attachment) -> dict[str, Any]:
        with self._lock:
            self.link_threads.add(threading.current_thread().name)
        if not attachment.collar_id:
            raise AttachmentError(f"no stored collar for device ID {attachment.device_id}")
        message = self.link_errors.get(attachment.device_id)
        if message is not None:
            raise AttachmentError(message)
        with self._lock:
            self.links.append(attachment)
        return {"assignment_id": f"as-{attachment.device_id}"}


@pytest.fixture()
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def fixed_now():
    return lambda: FIXED_NOW


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """schema: bctw
username: tester
extra_code_fields: [species]
required_fields: [species, device_id]
natural_key_fields: [wlh_id, animal_id]
header_aliases:
  Collar Serial: device_id
column_kinds:
  frequency: number
null_sentinels: ["null", "N/A"]
max_link_workers: 4
timezone: UTC
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def write_workbook():
    """Write ``rows`` (header text -> value) as one sheet of an .xlsx file."""
    import pandas as pd

    from src.excel.reader import SHEET_TEMPLATE_HEADERS

    def _write(path: Path, rows: list[dict[str, Any]], sheet: str = "Device Metadata", headers=None) -> Path:
        columns = list(headers if headers is not None else SHEET_TEMPLATE_HEADERS[sheet])
        frame = pd.DataFrame([{c: r.get(c) for c in columns} for r in rows], columns=columns)
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            frame.to_excel(writer, sheet_name=sheet, index=False)
        return path

    return _write
