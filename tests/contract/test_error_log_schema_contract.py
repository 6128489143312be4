from __future__ import annotations

import json
import pathlib

import jsonschema
import pytest

from src.models.bulk_result import BulkResult
from src.models.diagnostics import ErrorDescriptor, ErrorKind, ValidatedRow
from src.models.error_record import ErrorRecord
from src.services.aggregator import ResultAggregator

"""Error log JSON Lines contract."""

SCHEMA_PATH = pathlib.Path(__file__).resolve().parents[2] / "contracts" / "error_log_schema.json"


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_preview_records_match_schema(schema):
    rows = [
        ValidatedRow(0, {}, {"missing_data": ErrorDescriptor("x", "", kind=ErrorKind.MISSING_REQUIRED_DATA)}),
        ValidatedRow(1, {}, {"device_id": ErrorDescriptor("y", "", kind=ErrorKind.OVERLAP_CONFLICT)}),
    ]
    for record in ResultAggregator.preview_error_records(rows, "up.xlsx", "Device Metadata"):
        jsonschema.validate(json.loads(record.to_json_line()), schema)


def test_batch_level_record_matches_schema(schema):
    result = BulkResult.batch_failure("animal upsert failed: timeout")
    (record,) = ResultAggregator.bulk_error_records(result, "up.csv", "<CSV>")
    jsonschema.validate(json.loads(record.to_json_line()), schema)


def test_schema_rejects_extra_key(schema):
    line = json.loads(ErrorRecord.create("a", "s", 0, "IMPORT_ERROR", "m").to_json_line())
    line["db_message"] = "not allowed"
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(line, schema)
