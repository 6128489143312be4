from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import yaml

from src.config.loader import SCHEMA_PATH, load_config

"""The shipped example config must satisfy the config schema."""

REPO_ROOT = Path(__file__).resolve().parents[2]


def test_example_config_is_valid():
    data = yaml.safe_load((REPO_ROOT / "config" / "import.yml").read_text(encoding="utf-8"))
    jsonschema.validate(data, json.loads(SCHEMA_PATH.read_text(encoding="utf-8")))


def test_example_config_loads(monkeypatch):
    monkeypatch.delenv("IMPORT_USERNAME", raising=False)
    cfg = load_config(REPO_ROOT / "config" / "import.yml")
    assert cfg.schema == "bctw"
    assert cfg.header_aliases["Telemetry Device ID"] == "device_id"
    assert cfg.column_kinds["capture_date"] == "date"
