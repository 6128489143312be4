from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..db.store import ImportStore, ReferenceStoreUnavailable, StoreError
from ..models.config_models import ImportConfig
from ..models.diagnostics import ValidatedRow
from ..excel.reader import CSV_SHEET
from ..models.row_data import RowData, RowKind
from .aggregator import ResultAggregator
from .code_cache import load_code_domain, resolve_code_fields
from .overlap import OverlapDetector
from .progress import RowProgress
from .uniqueness import UniquenessResolver
from .validator import RowValidator

"""Validation pass over one uploaded sheet (the import preview).

Reference data (code lists, column kinds) is read once at the start of the
pass. Every row then goes through the field validator; rows of the device
metadata sheet with no field errors also get the assignment overlap and
new-animal checks. In a CSV upload the combined animal + device rows get the
same treatment, other row kinds only the field checks. Every input row appears
in the output, pass or fail.
"""

logger = logging.getLogger(__name__)

DEVICE_METADATA_SHEET = "Device Metadata"
TELEMETRY_SHEET = "Telemetry"


@dataclass(frozen=True)
class PreviewResult:
    sheet: str
    headers: list[str]
    rows: list[ValidatedRow] = field(default_factory=list)

    @property
    def error_rows(self) -> list[ValidatedRow]:
        return [r for r in self.rows if not r.success]

    @property
    def prompt_rows(self) -> list[ValidatedRow]:
        return [r for r in self.rows if r.needs_prompt]

    @property
    def has_errors(self) -> bool:
        return bool(self.error_rows)

    def is_submittable(self, acknowledged_prompts: bool = False) -> bool:
        return not self.has_errors and (acknowledged_prompts or not self.prompt_rows)

    def import_rows(self) -> list[RowData]:
        """Normalized row data ready for the bulk upsert."""
        return [RowData.from_values(r.row_index, r.data) for r in self.rows]

    def to_dict(self) -> dict[str, Any]:
        return {"headers": list(self.headers), "rows": [r.to_dict() for r in self.rows]}


def _column_kinds(store: ImportStore, config: ImportConfig) -> dict[str, str]:
    try:
        kinds = dict(store.fetch_column_kinds())
    except ReferenceStoreUnavailable:
        raise
    except StoreError as e:
        raise ReferenceStoreUnavailable(f"failed to retrieve column types: {e}") from e
    kinds.update({k: v for k, v in config.column_kinds.items() if v != "code"})
    return kinds


def build_validator(store: ImportStore, config: ImportConfig, rows: Sequence[RowData]) -> RowValidator:
    """Load this session's reference data and return a validator bound to it.

    Raises:
        ReferenceStoreUnavailable: any reference lookup failed.
    """
    code_fields = resolve_code_fields(store, config.extra_code_fields)
    code_fields |= {k for k, v in config.column_kinds.items() if v == "code"}
    present = {k for row in rows for k in row.present_values()}
    domain = load_code_domain(store, code_fields & present)
    return RowValidator(domain, _column_kinds(store, config), config.required_fields, config.natural_key_fields)


def validate_rows(
    rows: Sequence[RowData],
    store: ImportStore,
    config: ImportConfig,
    sheet: str = DEVICE_METADATA_SHEET,
    headers: Sequence[str] | None = None,
    now: Callable[[], datetime] | None = None,
) -> PreviewResult:
    """Validate every row of ``sheet``.

    Raises:
        ReferenceStoreUnavailable: reference data or an assignment history
            could not be read; no partial preview is returned.
    """
    validator = build_validator(store, config, rows)
    overlap = OverlapDetector(store, now=now) if now is not None else OverlapDetector(store)
    uniqueness = UniquenessResolver(store)

    validated: list[ValidatedRow] = []
    with RowProgress(len(rows), description=f"Validating {sheet}") as progress:
        for row in rows:
            metadata_row = _is_metadata_row(sheet, row)
            base = validator.validate(row, check_required=metadata_row)
            if metadata_row and base.success:
                base = ResultAggregator.merge_row(base, overlap.check(base.data), uniqueness.check(base.data))
            validated.append(base)
            progress.advance(success=base.success)

    logger.info(
        "sheet=%s rows=%d invalid=%d prompts=%d",
        sheet,
        len(validated),
        sum(1 for r in validated if not r.success),
        sum(1 for r in validated if r.needs_prompt),
    )
    return PreviewResult(
        sheet=sheet,
        headers=list(headers) if headers is not None else _headers_of(rows),
        rows=validated,
    )


def _is_metadata_row(sheet: str, row: RowData) -> bool:
    if sheet == DEVICE_METADATA_SHEET:
        return True
    return sheet == CSV_SHEET and row.kind is RowKind.COMBINED


def _headers_of(rows: Sequence[RowData]) -> list[str]:
    seen: dict[str, None] = {}
    for row in rows:
        for key in row.values:
            seen.setdefault(key, None)
    return list(seen)
