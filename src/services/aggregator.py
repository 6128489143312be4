from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ..models.bulk_result import BulkError, BulkResult, UpsertOutcome
from ..models.diagnostics import RowDiagnostics, ValidatedRow
from ..models.error_record import ErrorRecord

"""Diagnostic aggregation.

Row level: field errors from the validator plus errors/warnings from the
cross-row checks are merged into one ValidatedRow per input row. Warnings never
affect ``success``.

Batch level: per-phase orchestrator outcomes are merged into one BulkResult;
every error keeps the row index and a copy of the row.
"""


class ResultAggregator:
    @staticmethod
    def merge_row(base: ValidatedRow, *checks: RowDiagnostics) -> ValidatedRow:
        errors = dict(base.errors)
        warnings = list(base.warnings)
        for check in checks:
            errors.update(check.errors)
            warnings.extend(check.warnings)
        return ValidatedRow(row_index=base.row_index, data=dict(base.data), errors=errors, warnings=warnings)

    # ------------------------------------------------------------------
    # bulk result assembly
    # ------------------------------------------------------------------
    @staticmethod
    def add_phase(result: BulkResult, outcome: UpsertOutcome, noun: str) -> None:
        """Fold a fully successful phase into the running result as one summary line."""
        result.summary.append(f"{len(outcome.results)} {noun} were successfully added")

    @staticmethod
    def add_link_success(
        result: BulkResult, rownum: int, animal_identifier: str, device_id: str, link: Mapping[str, Any] | None = None
    ) -> None:
        record: dict[str, Any] = {
            "rownum": rownum,
            "device_id": device_id,
            "success": f"{animal_identifier} successfully attached to {device_id}",
        }
        if link and link.get("assignment_id") is not None:
            record["assignment_id"] = link["assignment_id"]
        result.results.append(record)

    @staticmethod
    def add_row_error(result: BulkResult, rownum: int, row: Mapping[str, Any], message: str) -> None:
        result.errors.append(BulkError.for_row(rownum, row, message))

    # ------------------------------------------------------------------
    # error log records
    # ------------------------------------------------------------------
    @staticmethod
    def preview_error_records(rows: Iterable[ValidatedRow], file: str, sheet: str) -> list[ErrorRecord]:
        records: list[ErrorRecord] = []
        for row in rows:
            for field_name, err in row.errors.items():
                records.append(
                    ErrorRecord.create(
                        file=file,
                        sheet=sheet,
                        row=row.row_index,
                        field=field_name,
                        error_type=err.kind.value,
                        message=err.desc,
                    )
                )
        return records

    @staticmethod
    def bulk_error_records(result: BulkResult, file: str, sheet: str) -> list[ErrorRecord]:
        return [
            ErrorRecord.create(file=file, sheet=sheet, row=e.rownum, error_type="IMPORT_ERROR", message=e.error)
            for e in result.errors
        ]
