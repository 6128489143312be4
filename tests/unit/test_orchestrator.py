from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from src.models.config_models import ImportConfig
from src.models.row_data import RowData
from src.services.orchestrator import BulkUpsertOrchestrator, ImportRejected, dispatch_import
from src.services.preview import validate_rows


def _rows(*values: dict) -> list[RowData]:
    return [RowData.from_values(i, v) for i, v in enumerate(values)]


@pytest.fixture()
def orchestrator(fake_store, fixed_now) -> BulkUpsertOrchestrator:
    return BulkUpsertOrchestrator(fake_store, max_link_workers=4, now=fixed_now)


def test_full_run_links_every_row(fake_store, orchestrator):
    rows = _rows(
        {"device_id": 101, "species": "Moose", "wlh_id": "17-1", "capture_date": date(2024, 1, 1)},
        {"device_id": 102, "species": "Moose", "animal_id": "A2"},
    )
    result = orchestrator.run(rows)
    assert result.success
    assert result.summary == ["2 devices were successfully added", "2 animals were successfully added"]
    assert [r["rownum"] for r in result.results] == [0, 1]
    assert result.results[0]["success"] == "17-1 successfully attached to 101"
    assert result.results[1]["assignment_id"] == "as-102"
    by_device = {a.device_id: a for a in fake_store.links}
    assert by_device["101"].critter_id == "a-17-1"
    assert by_device["101"].collar_id == "c-101"
    assert by_device["102"].critter_id == "a-A2"


def test_device_phase_row_error_stops_everything(fake_store, orchestrator):
    rows = _rows(
        {"device_id": 1, "species": "Moose", "animal_id": "A1"},
        {"device_id": 2, "species": "Moose", "animal_id": "A2"},
        {"device_id": 3, "species": "Moose", "animal_id": "A3"},
    )
    fake_store.device_errors["3"] = "duplicate frequency"
    result = orchestrator.run(rows)
    assert [(e.rownum, e.error) for e in result.errors] == [(2, "duplicate frequency")]
    assert result.errors[0].row["device_id"] == 3
    assert fake_store.upserted_animals == []
    assert fake_store.links == []


def test_device_phase_failure_is_batch_error(fake_store, orchestrator):
    fake_store.device_phase_error = "connection lost"
    result = orchestrator.run(_rows({"device_id": 1, "animal_id": "A1"}))
    assert [(e.rownum, e.row) for e in result.errors] == [(-1, {})]
    assert "connection lost" in result.errors[0].error
    assert fake_store.upserted_animals == []


def test_animal_phase_error_skips_attach(fake_store, orchestrator):
    fake_store.animal_errors["A2"] = "invalid region"
    result = orchestrator.run(
        _rows({"device_id": 1, "animal_id": "A1"}, {"device_id": 2, "animal_id": "A2"})
    )
    assert [(e.rownum, e.error) for e in result.errors] == [(1, "invalid region")]
    assert len(fake_store.upserted_devices) == 2
    assert fake_store.links == []


def test_link_failure_is_isolated_to_its_row(fake_store, orchestrator):
    fake_store.link_errors["1"] = "collar already attached"
    rows = _rows(
        {"device_id": 1, "species": "Moose", "animal_id": "A1"},
        {"device_id": 2, "species": "Moose", "animal_id": "A2"},
    )
    result = orchestrator.run(rows)
    assert [e.rownum for e in result.errors] == [0]
    assert result.errors[0].error == "Animal ID A1 collar already attached"
    assert [r["rownum"] for r in result.results] == [1]
    assert [a.device_id for a in fake_store.links] == ["2"]


def test_link_failure_isolated_with_many_rows(fake_store, orchestrator):
    rows = _rows(*({"device_id": i, "animal_id": f"A{i}"} for i in range(20)))
    for i in range(0, 20, 3):
        fake_store.link_errors[str(i)] = "nope"
    result = orchestrator.run(rows)
    assert sorted(e.rownum for e in result.errors) == list(range(0, 20, 3))
    assert sorted(r["rownum"] for r in result.results) == [i for i in range(20) if i % 3]
    assert all(name.startswith("link") for name in fake_store.link_threads)


def test_attachment_interval(fake_store, orchestrator):
    orchestrator.run(
        _rows(
            {"device_id": 1, "animal_id": "A1", "capture_date": date(2024, 1, 1), "retrieval_date": date(2024, 3, 1),
             "mortality_date": date(2024, 2, 1)},
            {"device_id": 2, "animal_id": "A2", "retrieval_date": date(2024, 9, 1)},
            {"device_id": 3, "animal_id": "A3", "capture_date": date(2024, 1, 1)},
        )
    )
    by_device = {a.device_id: a for a in fake_store.links}
    assert by_device["1"].attachment_start == datetime(2024, 1, 1, tzinfo=UTC)
    assert by_device["1"].attachment_end == datetime(2024, 2, 1, tzinfo=UTC)
    assert by_device["1"].data_life_end == by_device["1"].attachment_end
    assert by_device["2"].attachment_start == datetime(2024, 6, 1, tzinfo=UTC)
    assert by_device["2"].attachment_end == datetime(2024, 9, 1, tzinfo=UTC)
    assert by_device["3"].attachment_end is None


def test_rows_are_matched_by_natural_key(fake_store, orchestrator):
    # FakeStore returns records reversed; a positional match would cross the links
    rows = _rows(
        {"device_id": 11, "wlh_id": "W-1", "animal_id": "X"},
        {"device_id": 12, "wlh_id": "W-2", "animal_id": "Y"},
    )
    orchestrator.run(rows)
    assert {(a.device_id, a.critter_id) for a in fake_store.links} == {("11", "a-W-1"), ("12", "a-W-2")}


def test_unmatched_rows_become_row_errors(fake_store, orchestrator):
    fake_store.omit_collar_for.add("2")
    result = orchestrator.run(
        _rows(
            {"device_id": 1},
            {"device_id": 2, "animal_id": "A2"},
        )
    )
    assert [e.rownum for e in result.errors] == [0, 1]
    assert "unable to find matching animal" in result.errors[0].error
    assert result.errors[1].error == "Animal ID A2 no stored collar for device ID 2"


def test_submit_requires_clean_acknowledged_preview(fake_store, orchestrator, fixed_now):
    config = ImportConfig()
    preview = validate_rows(
        _rows({"species": "Moose", "device_id": 1, "wlh_id": "17-1"}), fake_store, config, now=fixed_now
    )
    with pytest.raises(ImportRejected, match="acknowledged"):
        orchestrator.submit(preview)
    result = orchestrator.submit(preview, acknowledged_prompts=True)
    assert result.success and len(fake_store.links) == 1

    bad = validate_rows(_rows({"species": "Unicorn", "device_id": 2}), fake_store, config, now=fixed_now)
    with pytest.raises(ImportRejected, match="errors"):
        orchestrator.submit(bad, acknowledged_prompts=True)


def test_dispatch_routes_by_kind(fake_store, orchestrator):
    telemetry = _rows(
        {"device_id": 1, "latitude": 1.0, "longitude": 2.0, "acquisition_date": "2024-01-01"},
        {"device_id": 1, "animal_id": "A1"},
    )
    result = dispatch_import(telemetry, fake_store, orchestrator)
    assert len(fake_store.upserted_telemetry) == 1
    assert fake_store.upserted_devices == []
    assert result.success

    result = dispatch_import(_rows({"device_id": 5}, {"animal_id": "A9"}), fake_store, orchestrator)
    assert [r.values["device_id"] for r in fake_store.upserted_devices] == [5]
    assert fake_store.upserted_animals == []
    assert result.summary == ["1 devices were successfully added"]


def test_dispatch_animal_only_and_unknown_rows(fake_store, orchestrator):
    result = dispatch_import(_rows({"animal_id": "A1"}, {"nickname": "?"}), fake_store, orchestrator)
    assert len(fake_store.upserted_animals) == 1
    assert [(e.rownum, e.error) for e in result.errors] == [(1, "row did not match any known type")]


def test_dispatch_nothing_recognised(fake_store, orchestrator):
    result = dispatch_import(_rows({"nickname": "?"}), fake_store, orchestrator)
    assert [e.rownum for e in result.errors] == [-1, 0]
    assert result.errors[0].error == "import failed - rows did not match any known type"
