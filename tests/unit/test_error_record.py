from __future__ import annotations

import json

from src.models.error_record import ErrorRecord


def test_create_sets_utc_timestamp():
    rec = ErrorRecord.create("up.xlsx", "Device Metadata", 3, "FIELD_VALIDATION", "bad", field="species")
    assert rec.timestamp.endswith("Z")
    assert rec.field == "species"


def test_to_json_line_has_fixed_keys():
    rec = ErrorRecord.create("up.xlsx", "<CSV>", -1, "IMPORT_ERROR", "nöt ascii")
    data = json.loads(rec.to_json_line())
    assert list(data) == ["timestamp", "file", "sheet", "row", "field", "error_type", "message"]
    assert data["row"] == -1 and data["field"] == ""
    assert "nöt ascii" in rec.to_json_line()
