from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from src.models.attachment import Attachment
from src.models.bulk_result import BulkError, UpsertOutcome
from src.models.diagnostics import jsonable
from src.models.interval import AssignmentInterval
from src.models.row_data import RowData

from .batch_upsert import BatchMetrics, BatchUpsertError, batch_upsert
from .store import AttachmentError, ReferenceStoreUnavailable, StoreError

"""PostgreSQL implementation of ImportStore.

Every statement is parameterized: row data travels as query parameters (JSON
documents via psycopg2.extras.Json), and schema/function names are composed
with psycopg2.sql.Identifier.

Connections come from a psycopg2 ThreadedConnectionPool so that attachment
calls issued from worker threads each run on their own connection and commit or
roll back independently.
"""

logger = logging.getLogger(__name__)

TELEMETRY_TABLE = "telemetry_manual"
TELEMETRY_COLUMNS: tuple[str, ...] = (
    "device_id",
    "latitude",
    "longitude",
    "acquisition_date",
    "elevation",
    "temperature",
    "satellite",
    "dilution",
    "main_voltage",
    "backup_voltage",
)
TELEMETRY_KEY: tuple[str, ...] = ("device_id", "acquisition_date")

# information_schema data_type -> declared field kind
_PG_KIND = {
    "integer": "number",
    "bigint": "number",
    "smallint": "number",
    "numeric": "number",
    "real": "number",
    "double precision": "number",
    "timestamp without time zone": "date",
    "timestamp with time zone": "date",
    "date": "date",
    "boolean": "boolean",
}


def pg_kind(data_type: str) -> str:
    return _PG_KIND.get(data_type, "string")


def _json_row(row: RowData) -> dict[str, Any]:
    return {k: jsonable(v) for k, v in row.present_values().items()}


class PostgresImportStore:
    """ImportStore backed by the project's PostgreSQL functions."""

    def __init__(self, pool: Any, schema: str = "bctw", username: str | None = None) -> None:
        self._pool = pool
        self.schema = schema
        self.username = username or ""

    # ------------------------------------------------------------------
    # connection handling
    # ------------------------------------------------------------------
    @contextmanager
    def _connection(self) -> Iterator[Any]:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    def _function(self, name: str) -> sql.Composed:
        return sql.SQL("{}").format(sql.Identifier(self.schema, name))

    def _fetch(self, query: sql.Composable | str, params: Sequence[Any], what: str) -> list[dict[str, Any]]:
        """Run a read-only query; any driver failure means reference data is unavailable."""
        try:
            with self._connection() as conn:
                try:
                    with conn.cursor(cursor_factory=RealDictCursor) as cur:
                        cur.execute(query, params)
                        rows = [dict(r) for r in cur.fetchall()]
                finally:
                    conn.rollback()
        except psycopg2.Error as e:
            raise ReferenceStoreUnavailable(f"failed to retrieve {what}: {e}") from e
        return rows

    # ------------------------------------------------------------------
    # reference data
    # ------------------------------------------------------------------
    def fetch_code_headers(self) -> list[str]:
        query = sql.SQL("SELECT code_header_name FROM {}").format(
            sql.Identifier(self.schema, "code_header")
        )
        return [r["code_header_name"] for r in self._fetch(query, (), "code headers")]

    def fetch_code_descriptions(self, domain_key: str) -> list[str]:
        query = sql.SQL("SELECT description FROM {}(%s, %s, %s)").format(self._function("get_code"))
        rows = self._fetch(query, (self.username, domain_key, 0), f"codes for {domain_key}")
        return [r["description"] for r in rows]

    def fetch_column_kinds(self) -> dict[str, str]:
        query = (
            "SELECT column_name, data_type FROM information_schema.columns "
            "WHERE table_schema = %s AND table_name IN (%s, %s)"
        )
        rows = self._fetch(query, (self.schema, "animal", "collar"), "column types")
        return {r["column_name"]: pg_kind(r["data_type"]) for r in rows}

    def fetch_device_history(self, device_id: str) -> list[AssignmentInterval]:
        query = sql.SQL("SELECT attachment_start, attachment_end FROM {}(%s)").format(
            self._function("get_device_assignment_history")
        )
        rows = self._fetch(query, (device_id,), f"assignment history for device {device_id}")
        return [AssignmentInterval(str(device_id), r["attachment_start"], r["attachment_end"]) for r in rows]

    def fetch_animal_history(self, critter_id: str) -> list[AssignmentInterval]:
        query = sql.SQL("SELECT attachment_start, attachment_end FROM {}(%s, %s)").format(
            self._function("get_animal_collar_assignment_history")
        )
        rows = self._fetch(query, (self.username, critter_id), f"assignment history for animal {critter_id}")
        return [AssignmentInterval(str(critter_id), r["attachment_start"], r["attachment_end"]) for r in rows]

    def is_new_animal(self, row: Mapping[str, Any]) -> bool:
        query = sql.SQL("SELECT {}(%s::jsonb) AS result").format(self._function("is_new_animal"))
        payload = {k: jsonable(v) for k, v in row.items()}
        rows = self._fetch(query, (Json(payload),), "animal identity match")
        result = rows[0]["result"] if rows else None
        if isinstance(result, Mapping):
            return bool(result.get("is_new"))
        return bool(result)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def _upsert_rows(self, rows: Sequence[RowData], record_type: str) -> UpsertOutcome:
        """Upsert rows one by one inside a single transaction.

        Each row runs under its own SAVEPOINT so a failure is attributed to that
        row. If any row fails the whole transaction is rolled back: a phase
        either writes every row or none of them.
        """
        if not rows:
            return UpsertOutcome()
        query = sql.SQL("SELECT * FROM {}(%s, %s::jsonb, %s)").format(self._function("upsert_bulk"))
        results: list[dict[str, Any]] = []
        errors: list[BulkError] = []
        try:
            with self._connection() as conn:
                try:
                    with conn.cursor(cursor_factory=RealDictCursor) as cur:
                        for row in rows:
                            cur.execute("SAVEPOINT import_row")
                            try:
                                cur.execute(query, (self.username, Json([_json_row(row)]), record_type))
                                results.extend(dict(r) for r in cur.fetchall())
                                cur.execute("RELEASE SAVEPOINT import_row")
                            except psycopg2.Error as e:
                                cur.execute("ROLLBACK TO SAVEPOINT import_row")
                                message = (e.pgerror or str(e)).strip()
                                errors.append(BulkError.for_row(row.row_index, row.values, message))
                    if errors:
                        conn.rollback()
                    else:
                        conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except psycopg2.Error as e:
            raise StoreError(f"{record_type} upsert failed: {e}") from e
        logger.debug("upsert %s rows=%d results=%d errors=%d", record_type, len(rows), len(results), len(errors))
        if errors:
            return UpsertOutcome(results=[], errors=errors)
        return UpsertOutcome(results=results, errors=[])

    def upsert_devices(self, rows: Sequence[RowData]) -> UpsertOutcome:
        return self._upsert_rows(rows, "device")

    def upsert_animals(self, rows: Sequence[RowData]) -> UpsertOutcome:
        return self._upsert_rows(rows, "animal")

    def upsert_telemetry(self, rows: Sequence[RowData]) -> UpsertOutcome:
        if not rows:
            return UpsertOutcome()
        present = {k for r in rows for k in r.present_values()}
        columns = [c for c in TELEMETRY_COLUMNS if c in present]

        def _log_metrics(m: BatchMetrics) -> None:
            logger.debug("telemetry batch size=%d elapsed=%.3fs", m.batch_size, m.elapsed_seconds)

        try:
            with self._connection() as conn:
                try:
                    with conn.cursor() as cur:
                        result = batch_upsert(
                            cur,
                            self.schema,
                            TELEMETRY_TABLE,
                            columns,
                            [[r.values.get(c) for c in columns] for r in rows],
                            conflict_columns=TELEMETRY_KEY,
                            metrics_callback=_log_metrics,
                        )
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except (BatchUpsertError, psycopg2.Error) as e:
            raise StoreError(f"telemetry upsert failed: {e}") from e
        return UpsertOutcome(
            results=[{"success": f"{result.affected_rows} telemetry points were successfully added"}]
        )

    def link_device_animal(self, attachment: Attachment) -> dict[str, Any]:
        if not attachment.collar_id:
            raise AttachmentError(f"no stored collar for device ID {attachment.device_id}")
        query = sql.SQL("SELECT * FROM {}(%s, %s, %s, %s, %s, %s, %s)").format(
            self._function("link_collar_to_animal")
        )
        params = (
            self.username,
            attachment.collar_id,
            attachment.critter_id,
            attachment.attachment_start,
            attachment.data_life_start,
            attachment.attachment_end,
            attachment.data_life_end,
        )
        try:
            with self._connection() as conn:
                try:
                    with conn.cursor(cursor_factory=RealDictCursor) as cur:
                        cur.execute(query, params)
                        row = cur.fetchone()
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except psycopg2.Error as e:
            raise AttachmentError((e.pgerror or str(e)).strip()) from e
        return dict(row) if row else {}
