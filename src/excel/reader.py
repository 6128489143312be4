from __future__ import annotations

import math
import re
import zipfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd

from ..models.config_models import ImportConfig
from ..models.row_data import RowData

"""Spreadsheet / CSV reader.

The first row of a sheet is the header row; every following non-blank row is
a data row. Header text is mapped to field names through the configured
aliases (falling back to snake_case), so ``Capture Date`` becomes
``capture_date``. Cell values come out as plain Python values: blanks and
null sentinels become None, whole-number floats become ints and naive
timestamps are localized to the configured timezone.
"""

__all__ = [
    "CSV_SHEET",
    "DEFAULT_HEADER_ALIASES",
    "SHEET_TEMPLATE_HEADERS",
    "ImportFileError",
    "SheetData",
    "field_name",
    "frame_to_rows",
    "read_csv",
    "read_sheet",
]

CSV_SHEET = "<CSV>"

DEFAULT_HEADER_ALIASES: dict[str, str] = {
    "Wildlife Health ID": "wlh_id",
    "Telemetry Device ID": "device_id",
    "Device Retrieval Date": "retrieval_date",
    "Animal Mortality Date": "mortality_date",
}

METADATA_TEMPLATE_HEADERS: tuple[str, ...] = (
    "Wildlife Health ID", "Animal ID", "Species", "Population Unit", "Region", "Sex",
    "Animal Status", "Capture Date", "Capture Latitude", "Capture Longitude",
    "Capture UTM Easting", "Capture UTM Northing", "Capture UTM Zone", "Capture Comment",
    "Ear Tag Right ID", "Ear Tag Right Colour", "Ear Tag Left ID", "Ear Tag Left Colour",
    "Compulsory Inspection ID", "COORS ID", "Leg Band ID", "Microchip ID", "Nickname",
    "Pit Tag ID", "RAPP Ear Tag ID", "Recapture ID", "Wing Band ID", "HWCN ID",
    "Telemetry Device ID", "Device Deployment Status", "Device Make", "Device Model",
    "Device Type", "Frequency", "Frequency Unit", "Fix Interval", "Fix Interval Rate",
    "Satellite Network", "Vaginal Implant Transmitter ID", "Camera Device ID",
    "Dropoff Device ID", "Dropoff Frequency", "Dropoff Frequency Unit", "Malfunction Date",
    "Malfunction Comment", "Device Malfunction Type", "Device Retrieval Date",
    "Device Retrieval Comment", "Animal Mortality Date", "Suspected Mortality Cause",
    "Mortality Comment",
)

TELEMETRY_TEMPLATE_HEADERS: tuple[str, ...] = (
    "Device ID", "Latitude", "Longitude", "Acquisition Date", "Elevation", "Temperature",
    "Satellite", "Dilution", "Main Voltage", "Backup Voltage",
)

# Leading headers each known sheet must carry, in order
SHEET_TEMPLATE_HEADERS: dict[str, tuple[str, ...]] = {
    "Device Metadata": METADATA_TEMPLATE_HEADERS,
    "Telemetry": TELEMETRY_TEMPLATE_HEADERS,
}

_NON_WORD = re.compile(r"[^0-9a-zA-Z]+")


class ImportFileError(Exception):
    """Raised when the uploaded file cannot be read or does not match its template."""


@dataclass
class SheetData:
    sheet_name: str
    headers: list[str]  # mapped field names, in column order
    rows: list[RowData] = field(default_factory=list)


def field_name(header: str, aliases: Mapping[str, str] | None = None) -> str:
    """Map a header cell to a field name: configured alias, default alias, else snake_case."""
    text = str(header).strip()
    if aliases and text in aliases:
        return aliases[text]
    if text in DEFAULT_HEADER_ALIASES:
        return DEFAULT_HEADER_ALIASES[text]
    return _NON_WORD.sub("_", text).strip("_").lower()


def _check_template(sheet_name: str, headers: Sequence[str]) -> None:
    required = SHEET_TEMPLATE_HEADERS.get(sheet_name)
    if required is None:
        return
    for idx, expected in enumerate(required):
        got = headers[idx] if idx < len(headers) else None
        if got != expected:
            raise ImportFileError(
                f"sheet '{sheet_name}': Headers from this file do not match template headers. "
                f"(column {idx + 1}: expected {expected!r}, got {got!r})"
            )


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as e:
        raise ImportFileError(f"unknown timezone: {name}") from e


def _cell(value: Any, null_sentinels: frozenset[str], tz: ZoneInfo) -> Any:
    if value is None:
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, datetime):  # includes pandas Timestamp
        if isinstance(value, pd.Timestamp):
            value = value.to_pydatetime()
        return value.replace(tzinfo=tz) if value.tzinfo is None else value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped == "" or stripped.upper() in null_sentinels:
            return None
        return stripped
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return int(value)
        return value
    if hasattr(value, "item"):  # numpy scalar
        return _cell(value.item(), null_sentinels, tz)
    return value


def frame_to_rows(df: pd.DataFrame, sheet_name: str, config: ImportConfig) -> SheetData:
    """Turn a DataFrame (header already applied) into classified RowData."""
    headers = [str(c).strip() for c in df.columns]
    names = [field_name(h, config.header_aliases) for h in headers]
    tz = _zone(config.timezone)

    rows: list[RowData] = []
    for raw in df.itertuples(index=False, name=None):
        values = {
            name: _cell(val, config.null_sentinels, tz)
            for name, val in zip(names, raw, strict=False)
            if name
        }
        if all(v is None for v in values.values()):
            continue
        rows.append(RowData.from_values(len(rows), values))
    return SheetData(sheet_name=sheet_name, headers=names, rows=rows)


def read_sheet(path: Path, sheet_name: str, config: ImportConfig, enforce_template: bool = True) -> SheetData:
    """Read one worksheet of an .xlsx upload.

    Raises:
        ImportFileError: the file cannot be opened, the sheet is missing, or the
            header row does not match the sheet's template.
    """
    try:
        xls = pd.ExcelFile(path)
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise ImportFileError(f"unable to read workbook {path.name}: {e}") from e
    with xls:
        if sheet_name not in [str(n) for n in xls.sheet_names]:
            raise ImportFileError(f"sheet '{sheet_name}' not found in {path.name}")
        df = xls.parse(sheet_name, header=0, dtype=object, keep_default_na=False, na_values=[""])
    if enforce_template:
        _check_template(sheet_name, [str(c).strip() for c in df.columns])
    return frame_to_rows(df, sheet_name, config)


def read_csv(path: Path, config: ImportConfig) -> SheetData:
    """Read a .csv upload; CSV files carry no template so the header is taken as is."""
    try:
        df = pd.read_csv(path, dtype=object, keep_default_na=False, na_values=[""], skipinitialspace=True)
    except (OSError, ValueError) as e:
        raise ImportFileError(f"unable to read csv {path.name}: {e}") from e
    return frame_to_rows(df, CSV_SHEET, config)
