from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from src.models.config_models import (
    DEFAULT_EXTRA_CODE_FIELDS,
    DEFAULT_NATURAL_KEY_FIELDS,
    DEFAULT_REQUIRED_FIELDS,
    DatabaseConfig,
    ImportConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config/import.yml
- Validate it against contracts/config_schema.json
- Apply defaults and the IMPORT_USERNAME environment override
"""

# src/config/loader.py -> src/config -> src -> repo_root
_repo_root = Path(__file__).parent.parent.parent
SCHEMA_PATH = _repo_root / "contracts" / "config_schema.json"

USERNAME_ENV = "IMPORT_USERNAME"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: the schema file is missing or not valid JSON, or the
            config data fails schema validation.
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)

    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    sentinels = frozenset(s.strip().upper() for s in data.get("null_sentinels", []))
    return ImportConfig(
        schema=data["schema"],
        username=os.getenv(USERNAME_ENV) or data.get("username"),
        extra_code_fields=tuple(data.get("extra_code_fields", DEFAULT_EXTRA_CODE_FIELDS)),
        required_fields=tuple(data.get("required_fields", DEFAULT_REQUIRED_FIELDS)),
        natural_key_fields=tuple(data.get("natural_key_fields", DEFAULT_NATURAL_KEY_FIELDS)),
        header_aliases=dict(data.get("header_aliases", {})),
        column_kinds=dict(data.get("column_kinds", {})),
        null_sentinels=sentinels,
        max_link_workers=data.get("max_link_workers", 8),
        timezone=data.get("timezone", "UTC"),
        database=db,
    )
