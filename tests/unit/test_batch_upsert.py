from __future__ import annotations

import pytest

from src.db.batch_upsert import BatchMetrics, BatchUpsertError, UpsertBatchResult, batch_upsert, build_upsert_statement


class DummyCursor:
    def __init__(self) -> None:
        self.statements: list = []


# execute_values is patched inside the module so the logic runs without a server

@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    import src.db.batch_upsert as bu

    def fake_execute_values(cursor, statement, rows, page_size=1000):
        cursor.statements.append((statement, rows, page_size))

    monkeypatch.setattr(bu, "execute_values", fake_execute_values)
    return fake_execute_values


def test_statement_uses_identifiers():
    stmt = build_upsert_statement("bctw", "telemetry_manual", ["device_id", "latitude"], ["device_id"])
    text = repr(stmt)
    assert "Identifier('bctw', 'telemetry_manual')" in text
    assert "Identifier('latitude')" in text
    assert "ON CONFLICT" in text and "DO NOTHING" in text
    assert "RETURNING" not in text


def test_statement_without_conflict_target():
    text = repr(build_upsert_statement("bctw", "t", ["a"]))
    assert "ON CONFLICT" not in text


def test_batch_upsert_basic():
    cur = DummyCursor()
    res = batch_upsert(cur, "bctw", "t", ["a", "b"], [(1, "x"), (2, "y")], page_size=50)
    assert isinstance(res, UpsertBatchResult)
    assert res.affected_rows == 2
    _, rows, page_size = cur.statements[0]
    assert rows == [[1, "x"], [2, "y"]]
    assert page_size == 50


def test_affected_rows_counts_every_page():
    cur = DummyCursor()
    res = batch_upsert(cur, "bctw", "t", ["a"], [[1], [2], [3]], page_size=2)
    assert res.affected_rows == 3
    assert len(cur.statements) == 1


def test_batch_upsert_empty_rows_skips_driver():
    cur = DummyCursor()
    metrics: list[BatchMetrics] = []
    res = batch_upsert(cur, "bctw", "t", ["a"], [], metrics_callback=metrics.append)
    assert res.affected_rows == 0
    assert cur.statements == [] and metrics == []


def test_metrics_reported_even_on_failure(monkeypatch):
    import src.db.batch_upsert as bu

    def failing(*args, **kwargs):
        raise RuntimeError("syntax error")

    monkeypatch.setattr(bu, "execute_values", failing)
    metrics: list[BatchMetrics] = []
    with pytest.raises(BatchUpsertError, match="syntax error"):
        batch_upsert(DummyCursor(), "bctw", "t", ["a"], [[1]], metrics_callback=metrics.append)
    assert len(metrics) == 1 and metrics[0].batch_size == 1
