from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from src.config.loader import ConfigError, load_config
from src.db.connection import connection_pool
from src.db.postgres_store import PostgresImportStore
from src.db.store import ImportStore, ReferenceStoreUnavailable
from src.excel.reader import ImportFileError, read_csv, read_sheet
from src.logging.error_log import ErrorLogBuffer
from src.logging.init import log_summary, setup_logging
from src.models.bulk_result import BulkResult
from src.models.config_models import ImportConfig
from src.services.aggregator import ResultAggregator
from src.services.orchestrator import BulkUpsertOrchestrator, ImportRejected, dispatch_import
from src.services.preview import DEVICE_METADATA_SHEET, PreviewResult, validate_rows
from src.services.summary import render_bulk_summary, render_preview_summary

"""CLI entrypoint.

    python -m src.cli FILE [--sheet NAME] [--commit] [--acknowledge-prompts]
                           [--output PATH] [--debug] [--config PATH]

An .xlsx FILE is validated sheet by sheet (default sheet: Device Metadata) and
its diagnostics printed; with --commit a clean preview is imported. A .csv FILE
is classified row by row and validated the same way; when the preview is clean
(prompts acknowledged) its rows go through the dispatch path.

Exit codes:
    0  preview clean / import fully successful
    2  row errors, unacknowledged prompt warnings, or partial import failure
    1  fatal: config, unreadable file, database unavailable
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/import.yml")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True lets .env values win over variables already in the process
    environment, so the database settings in .env take precedence.
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Animal / telemetry device metadata importer")
    p.add_argument("file", type=Path, help="Upload to import (.xlsx or .csv)")
    p.add_argument("--sheet", default=DEVICE_METADATA_SHEET, help="Worksheet to read from an .xlsx upload")
    p.add_argument("--commit", action="store_true", help="Write the rows when validation passes")
    p.add_argument(
        "--acknowledge-prompts", action="store_true", help="Accept warnings that need confirmation before import"
    )
    p.add_argument("--output", type=Path, help="Write the preview / import result as JSON to this path")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to import.yml")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


@contextmanager
def _postgres_store(cfg: ImportConfig) -> Iterator[ImportStore]:  # pragma: no cover (needs a server)
    # one connection per link worker plus one for the main thread
    with connection_pool(cfg.database, cfg.max_link_workers + 1) as pool:
        yield PostgresImportStore(pool, schema=cfg.schema, username=cfg.username)


def _write_output(payload: dict[str, Any], output: Path | None, logger: logging.Logger) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    if output is None:
        print(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")
    logger.info(f"result written to {output}")


def _report_bulk(result: BulkResult, file_name: str, sheet: str, errors: ErrorLogBuffer, logger: logging.Logger) -> None:
    for line in result.summary:
        logger.info(line)
    for err in result.errors:
        logger.error(f"row={err.rownum} {err.error}")
    errors.extend(ResultAggregator.bulk_error_records(result, file_name, sheet))


def _report_preview(preview: PreviewResult, file_name: str, errors: ErrorLogBuffer, logger: logging.Logger) -> None:
    for row in preview.rows:
        for field_name, err in row.errors.items():
            logger.warning(f"row={row.row_index} field={field_name} {err.desc}")
        for warning in row.warnings:
            label = "prompt" if warning.prompt else "note"
            logger.info(f"row={row.row_index} {label}: {warning.message}")
    errors.extend(ResultAggregator.preview_error_records(preview.rows, file_name, preview.sheet))


def _rejection(preview: PreviewResult, acknowledged_prompts: bool) -> str | None:
    if preview.has_errors:
        return f"{len(preview.error_rows)} row(s) have errors; correct them and upload again"
    if preview.prompt_rows and not acknowledged_prompts:
        return f"{len(preview.prompt_rows)} row(s) have warnings that must be acknowledged before import"
    return None


def _run_csv(
    args: argparse.Namespace, cfg: ImportConfig, store: ImportStore, errors: ErrorLogBuffer, logger: logging.Logger
) -> int:
    sheet = read_csv(args.file, cfg)
    logger.info(f"csv rows={len(sheet.rows)}")
    preview = validate_rows(sheet.rows, store, cfg, sheet=sheet.sheet_name, headers=sheet.headers)
    _report_preview(preview, args.file.name, errors, logger)
    log_summary(render_preview_summary(preview).removeprefix("SUMMARY "))
    rejection = _rejection(preview, args.acknowledge_prompts)
    if rejection is not None:
        logger.error(f"import rejected: {rejection}")
        _write_output(preview.to_dict(), args.output, logger)
        return EXIT_PARTIAL_FAILURE

    orchestrator = BulkUpsertOrchestrator(store, cfg.natural_key_fields, cfg.max_link_workers)
    result = dispatch_import(preview.import_rows(), store, orchestrator)
    _report_bulk(result, args.file.name, sheet.sheet_name, errors, logger)
    _write_output(result.to_dict(), args.output, logger)
    log_summary(render_bulk_summary(result).removeprefix("SUMMARY "))
    return EXIT_SUCCESS_ALL if result.success else EXIT_PARTIAL_FAILURE


def _run_workbook(
    args: argparse.Namespace, cfg: ImportConfig, store: ImportStore, errors: ErrorLogBuffer, logger: logging.Logger
) -> int:
    sheet = read_sheet(args.file, args.sheet, cfg)
    logger.info(f"sheet={args.sheet} rows={len(sheet.rows)}")
    preview = validate_rows(sheet.rows, store, cfg, sheet=args.sheet, headers=sheet.headers)
    _report_preview(preview, args.file.name, errors, logger)
    log_summary(render_preview_summary(preview).removeprefix("SUMMARY "))

    if not args.commit:
        _write_output(preview.to_dict(), args.output, logger)
        return EXIT_SUCCESS_ALL if preview.is_submittable(args.acknowledge_prompts) else EXIT_PARTIAL_FAILURE

    orchestrator = BulkUpsertOrchestrator(store, cfg.natural_key_fields, cfg.max_link_workers)
    try:
        if args.sheet == DEVICE_METADATA_SHEET:
            result = orchestrator.submit(preview, acknowledged_prompts=args.acknowledge_prompts)
        else:
            rejection = _rejection(preview, args.acknowledge_prompts)
            if rejection is not None:
                raise ImportRejected(rejection)
            result = dispatch_import(preview.import_rows(), store, orchestrator)
    except ImportRejected as e:
        logger.error(f"import rejected: {e}")
        _write_output(preview.to_dict(), args.output, logger)
        return EXIT_PARTIAL_FAILURE

    _report_bulk(result, args.file.name, args.sheet, errors, logger)
    _write_output(result.to_dict(), args.output, logger)
    log_summary(render_bulk_summary(result).removeprefix("SUMMARY "))
    return EXIT_SUCCESS_ALL if result.success else EXIT_PARTIAL_FAILURE


def _run(args: argparse.Namespace, cfg: ImportConfig, store: ImportStore, logger: logging.Logger) -> int:
    errors = ErrorLogBuffer()
    try:
        if args.file.suffix.lower() == ".csv":
            return _run_csv(args, cfg, store, errors, logger)
        return _run_workbook(args, cfg, store, errors, logger)
    except ImportFileError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL
    except ReferenceStoreUnavailable as e:
        logger.error(f"reference data unavailable: {e}")
        return EXIT_FATAL
    finally:
        log_path = errors.flush()
        if log_path is not None:
            logger.info(f"error log written to {log_path}")


def main(argv: list[str] | None = None, store: ImportStore | None = None) -> int:
    """Run the importer.

    ``store`` replaces the PostgreSQL store (used by tests); when omitted a
    connection pool is opened from the configured database settings.
    """
    # An empty list must not fall through to sys.argv (pytest's own flags).
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if not args.file.exists():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    if store is not None:
        return _run(args, cfg, store, logger)
    try:
        with _postgres_store(cfg) as pg_store:
            return _run(args, cfg, pg_store, logger)
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
