from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2 import sql
from psycopg2.extras import execute_values

"""Batched INSERT ... ON CONFLICT using psycopg2.extras.execute_values.

Used for rows that are written as one statement per page (telemetry points).
Table and column names are composed with psycopg2.sql.Identifier; values are
always sent as parameters.
"""


class BatchUpsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing data for a single batch upsert."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # time.time() at start
    end_time: float  # time.time() at end


@dataclass(frozen=True)
class UpsertBatchResult:
    affected_rows: int  # Rows sent; duplicates skipped by ON CONFLICT are included


def build_upsert_statement(
    schema: str,
    table: str,
    columns: Sequence[str],
    conflict_columns: Sequence[str] | None = None,
) -> sql.Composed:
    """Compose ``INSERT INTO schema.table (cols) VALUES %s [ON CONFLICT ... DO NOTHING]``."""
    stmt = sql.SQL("INSERT INTO {} ({}) VALUES %s").format(
        sql.Identifier(schema, table),
        sql.SQL(",").join(sql.Identifier(c) for c in columns),
    )
    if conflict_columns:
        stmt = stmt + sql.SQL(" ON CONFLICT ({}) DO NOTHING").format(
            sql.SQL(",").join(sql.Identifier(c) for c in conflict_columns)
        )
    return stmt


def batch_upsert(
    cursor: Any,
    schema: str,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    conflict_columns: Sequence[str] | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> UpsertBatchResult:
    """Write ``rows`` in pages of ``page_size``.

    Parameters
    ----------
    cursor: psycopg2 cursor
    schema, table: target relation
    columns: inserted columns, same order as each row
    rows: row value sequences
    conflict_columns: unique key; duplicates are skipped when given
    page_size: execute_values page size
    metrics_callback: receives a BatchMetrics after the statement ran.
        Not invoked when ``rows`` is empty (the function returns early).
    """
    rows_list = [list(r) for r in rows]
    if not rows_list:
        return UpsertBatchResult(affected_rows=0)

    statement = build_upsert_statement(schema, table, columns, conflict_columns)

    start_time = time.time()
    try:
        execute_values(cursor, statement, rows_list, page_size=page_size)
    except Exception as e:
        raise BatchUpsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    # rowcount only reflects the last page
    return UpsertBatchResult(affected_rows=len(rows_list))
