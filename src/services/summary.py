from __future__ import annotations

from typing import TYPE_CHECKING

from ..models.bulk_result import BulkResult

if TYPE_CHECKING:
    from .preview import PreviewResult

"""SUMMARY line rendering for preview and import runs.

Formats:

    SUMMARY rows={n} valid={n} invalid={n} prompts={n} warnings={n}
    SUMMARY results={n} errors={n}
"""


def render_preview_summary(preview: PreviewResult) -> str:
    """Render the SUMMARY line for a validation pass.

    ``warnings`` counts every warning on every row; ``prompts`` counts rows
    carrying at least one warning that needs acknowledgement.

    Examples:
        >>> from src.services.preview import PreviewResult
        >>> render_preview_summary(PreviewResult(sheet="Device Metadata", headers=[]))
        'SUMMARY rows=0 valid=0 invalid=0 prompts=0 warnings=0'
    """
    total = len(preview.rows)
    invalid = len(preview.error_rows)
    return (
        f"SUMMARY rows={total} "
        f"valid={total - invalid} "
        f"invalid={invalid} "
        f"prompts={len(preview.prompt_rows)} "
        f"warnings={sum(len(r.warnings) for r in preview.rows)}"
    )


def render_bulk_summary(result: BulkResult) -> str:
    return f"SUMMARY results={len(result.results)} errors={len(result.errors)}"
