from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..db.store import ImportStore, StoreError
from ..models.attachment import Attachment
from ..models.bulk_result import BulkResult, UpsertOutcome
from ..models.config_models import DEFAULT_NATURAL_KEY_FIELDS
from ..models.row_data import ANIMAL_IDENTITY_FIELDS, RowData, RowKind, key_text
from .aggregator import ResultAggregator
from .preview import PreviewResult

"""Staged bulk upsert of device, animal and attachment records.

Phases run strictly in order because an attachment needs both stored ids:

1. DEVICE  - upsert every row carrying a device as one batch
2. ANIMAL  - upsert every row carrying animal metadata as one batch
3. ATTACH  - link each row's device to its animal

Any row error in phase 1 stops the run and returns phase 1's result; the same
holds for phase 2. Phase 3 dispatches one link call per row concurrently; a
failure is recorded against that row only and never cancels its siblings.
Stored records are matched back to rows by natural key, not by position.
"""

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Base exception for import processing errors."""


class ImportRejected(ProcessingError):
    """The previewed rows are not in a state that may be submitted."""


class ImportPhase(Enum):
    DEVICE = "device"
    ANIMAL = "animal"
    ATTACH = "attach"


@dataclass(frozen=True)
class _LinkTask:
    row: RowData
    attachment: Attachment | None
    problem: str | None = None  # set when the row could not be matched to stored records


def _utcnow() -> datetime:
    return datetime.now(UTC)


def animal_identifier(values: Mapping[str, Any]) -> str:
    return key_text(values.get("animal_id") or values.get("wlh_id") or values.get("critter_id") or "")


class BulkUpsertOrchestrator:
    def __init__(
        self,
        store: ImportStore,
        natural_key_fields: Sequence[str] = DEFAULT_NATURAL_KEY_FIELDS,
        max_link_workers: int = 8,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.natural_key_fields = tuple(natural_key_fields)
        self.max_link_workers = max(1, max_link_workers)
        self.now = now
        self.aggregator = ResultAggregator()

    # ------------------------------------------------------------------
    # phases 1 and 2
    # ------------------------------------------------------------------
    def _run_phase(
        self, phase: ImportPhase, upsert: Callable[[Sequence[RowData]], UpsertOutcome], rows: Sequence[RowData]
    ) -> UpsertOutcome | BulkResult:
        """Return the outcome, or a BulkResult when the phase failed as a whole."""
        logger.info("phase=%s rows=%d", phase.value, len(rows))
        try:
            return upsert(rows)
        except StoreError as e:
            logger.error("phase=%s failed: %s", phase.value, e)
            return BulkResult.batch_failure(f"{phase.value} upsert failed: {e}")

    def run(self, rows: Sequence[RowData]) -> BulkResult:
        """Upsert devices, then animals, then attach devices to animals."""
        result = BulkResult()
        device_rows = [r for r in rows if r.values.get("device_id") is not None]
        animal_rows = [r for r in rows if any(r.values.get(f) is not None for f in ANIMAL_IDENTITY_FIELDS)]

        devices = self._run_phase(ImportPhase.DEVICE, self.store.upsert_devices, device_rows)
        if isinstance(devices, BulkResult):
            return devices
        if not devices.ok:
            logger.warning("phase=device errors=%d; skipping animal and attach phases", len(devices.errors))
            return BulkResult.from_outcome(devices)
        self.aggregator.add_phase(result, devices, "devices")

        animals = self._run_phase(ImportPhase.ANIMAL, self.store.upsert_animals, animal_rows)
        if isinstance(animals, BulkResult):
            return animals
        if not animals.ok:
            logger.warning("phase=animal errors=%d; skipping attach phase", len(animals.errors))
            return BulkResult.from_outcome(animals)
        self.aggregator.add_phase(result, animals, "animals")

        if device_rows:
            self._attach(device_rows, devices.results, animals.results, result)
        return result

    # ------------------------------------------------------------------
    # phase 3
    # ------------------------------------------------------------------
    def find_device(self, row: RowData, devices: Sequence[Mapping[str, Any]]) -> Mapping[str, Any] | None:
        wanted = key_text(row.values["device_id"])
        return next((d for d in devices if d.get("device_id") is not None and key_text(d["device_id"]) == wanted), None)

    def find_animal(self, row: RowData, animals: Sequence[Mapping[str, Any]]) -> Mapping[str, Any] | None:
        """Match on the first natural-key field the row carries."""
        for key in self.natural_key_fields:
            value = row.values.get(key)
            if value is None:
                continue
            wanted = key_text(value)
            return next((a for a in animals if a.get(key) is not None and key_text(a[key]) == wanted), None)
        return None

    def build_attachment(self, row: RowData, device: Mapping[str, Any], animal: Mapping[str, Any]) -> Attachment:
        """Start at capture (or now); end at mortality, else device retrieval, else open."""
        values = row.values
        start = values.get("capture_date") or animal.get("capture_date") or self.now()
        end = (
            values.get("mortality_date")
            or animal.get("mortality_date")
            or values.get("retrieval_date")
            or device.get("retrieval_date")
        )
        return Attachment(
            device_id=key_text(values["device_id"]),
            critter_id=key_text(animal.get("critter_id") or animal_identifier(animal)),
            attachment_start=start,
            attachment_end=end,
            collar_id=key_text(device["collar_id"]) if device.get("collar_id") is not None else None,
        )

    def _plan_link(self, row: RowData, devices: Sequence[Mapping[str, Any]], animals: Sequence[Mapping[str, Any]]) -> _LinkTask:
        device = self.find_device(row, devices)
        if device is None:
            return _LinkTask(row, None, f"unable to find matching collar with device ID {key_text(row.values['device_id'])}")
        animal = self.find_animal(row, animals)
        if animal is None:
            keys = ", ".join(self.natural_key_fields)
            return _LinkTask(row, None, f"unable to find matching animal by {keys}")
        try:
            return _LinkTask(row, self.build_attachment(row, device, animal))
        except (TypeError, ValueError) as e:
            return _LinkTask(row, None, f"invalid attachment interval: {e}")

    def _attach(
        self,
        rows: Sequence[RowData],
        devices: Sequence[Mapping[str, Any]],
        animals: Sequence[Mapping[str, Any]],
        result: BulkResult,
    ) -> None:
        tasks = [self._plan_link(row, devices, animals) for row in rows]
        runnable = [t for t in tasks if t.attachment is not None]
        logger.info("phase=%s rows=%d workers=%d", ImportPhase.ATTACH.value, len(runnable), self.max_link_workers)

        futures: dict[int, Future[dict[str, Any]]] = {}
        if runnable:
            with ThreadPoolExecutor(max_workers=self.max_link_workers, thread_name_prefix="link") as pool:
                for task in runnable:
                    futures[task.row.row_index] = pool.submit(self.store.link_device_animal, task.attachment)
            # leaving the with-block waits for every task; none is cancelled

        for task in tasks:
            identifier = animal_identifier(task.row.values)
            if task.problem is not None:
                self.aggregator.add_row_error(result, task.row.row_index, task.row.values, task.problem)
                continue
            future = futures[task.row.row_index]
            error = future.exception()
            if error is not None:
                logger.warning("attach row=%d failed: %s", task.row.row_index, error)
                self.aggregator.add_row_error(
                    result, task.row.row_index, task.row.values, f"Animal ID {identifier} {error}"
                )
            else:
                self.aggregator.add_link_success(
                    result, task.row.row_index, identifier, key_text(task.row.values["device_id"]), future.result()
                )

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------
    def submit(self, preview: PreviewResult, acknowledged_prompts: bool = False) -> BulkResult:
        """Run the import for a previewed sheet.

        Raises:
            ImportRejected: some row still has errors, or prompt warnings were
                not acknowledged.
        """
        if preview.has_errors:
            raise ImportRejected(f"{len(preview.error_rows)} row(s) have errors; correct them and upload again")
        if preview.prompt_rows and not acknowledged_prompts:
            raise ImportRejected(
                f"{len(preview.prompt_rows)} row(s) have warnings that must be acknowledged before import"
            )
        return self.run(preview.import_rows())


def dispatch_import(rows: Sequence[RowData], store: ImportStore, orchestrator: BulkUpsertOrchestrator) -> BulkResult:
    """Route classified rows to the matching import path.

    Telemetry wins over combined metadata, which wins over device-only and then
    animal-only rows. Unrecognised rows are reported and never written.
    """
    by_kind: dict[RowKind, list[RowData]] = {kind: [] for kind in RowKind}
    for row in rows:
        by_kind[row.kind].append(row)

    if not any(by_kind[k] for k in RowKind if k is not RowKind.UNKNOWN):
        return BulkResult.batch_failure("import failed - rows did not match any known type")

    if by_kind[RowKind.TELEMETRY]:
        try:
            result = BulkResult.from_outcome(store.upsert_telemetry(by_kind[RowKind.TELEMETRY]))
        except StoreError as e:
            result = BulkResult.batch_failure(f"telemetry upsert failed: {e}")
    elif by_kind[RowKind.COMBINED]:
        result = orchestrator.run(by_kind[RowKind.COMBINED])
    elif by_kind[RowKind.DEVICE]:
        result = _single_phase(store.upsert_devices, by_kind[RowKind.DEVICE], "devices")
    else:
        result = _single_phase(store.upsert_animals, by_kind[RowKind.ANIMAL], "animals")

    for row in by_kind[RowKind.UNKNOWN]:
        ResultAggregator.add_row_error(result, row.row_index, row.values, "row did not match any known type")
    return result


def _single_phase(upsert: Callable[[Sequence[RowData]], UpsertOutcome], rows: Sequence[RowData], noun: str) -> BulkResult:
    try:
        outcome = upsert(rows)
    except StoreError as e:
        return BulkResult.batch_failure(f"{noun} upsert failed: {e}")
    if not outcome.ok:
        return BulkResult.from_outcome(outcome)
    result = BulkResult(results=list(outcome.results))
    ResultAggregator.add_phase(result, outcome, noun)
    return result
