"""Domain models for the collar/animal metadata importer.

This package contains the frozen dataclasses shared by the reader, the
validation services, the store and the orchestrator.
"""

from .attachment import Attachment
from .bulk_result import BulkError, BulkResult, UpsertOutcome
from .code_domain import CodeDomain
from .config_models import DatabaseConfig, ImportConfig
from .diagnostics import ErrorDescriptor, ErrorKind, ValidatedRow, WarningInfo
from .interval import AssignmentInterval, intervals_overlap
from .row_data import RowData, RowKind, classify_row

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    # Row models
    "RowData",
    "RowKind",
    "classify_row",
    # Validation models
    "CodeDomain",
    "ErrorDescriptor",
    "ErrorKind",
    "ValidatedRow",
    "WarningInfo",
    # Assignment models
    "AssignmentInterval",
    "Attachment",
    "intervals_overlap",
    # Result models
    "BulkError",
    "BulkResult",
    "UpsertOutcome",
]
