from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the collar/animal metadata importer.

This module defines the typed configuration produced by src/config/loader.py
after the YAML file has passed schema validation.
"""

DEFAULT_REQUIRED_FIELDS: tuple[str, ...] = ("species", "device_id")
DEFAULT_NATURAL_KEY_FIELDS: tuple[str, ...] = ("wlh_id", "animal_id")
DEFAULT_EXTRA_CODE_FIELDS: tuple[str, ...] = ("species",)

# Allowed declared kinds for a field
FIELD_KINDS = frozenset({"code", "date", "number", "boolean", "string"})


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for an import session."""
    schema: str = "bctw"  # Database schema holding the import functions
    username: str | None = None  # Actor recorded on every write
    extra_code_fields: tuple[str, ...] = DEFAULT_EXTRA_CODE_FIELDS  # Code fields not listed in code_header
    required_fields: tuple[str, ...] = DEFAULT_REQUIRED_FIELDS  # Structurally required (metadata sheet)
    natural_key_fields: tuple[str, ...] = DEFAULT_NATURAL_KEY_FIELDS  # Animal match after upsert
    header_aliases: dict[str, str] = field(default_factory=dict)  # Header text -> field name
    column_kinds: dict[str, str] = field(default_factory=dict)  # Field -> declared kind override
    null_sentinels: frozenset[str] = frozenset()  # Upper-cased strings treated as blank
    max_link_workers: int = 8  # Attachment phase concurrency
    timezone: str = "UTC"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
