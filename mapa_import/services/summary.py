from __future__ import annotations

from ..models.issue import ValidationSummary
from ..models.version import PublishResult

"""SUMMARY line rendering.

Format:
SUMMARY analyzed={n} valid={n} errors={n} warnings={n} infos={n} version={n|-} imported={n}
"""

__all__ = [
    "render_summary_line",
]


def render_summary_line(summary: ValidationSummary, publish: PublishResult | None = None) -> str:
    """Render the SUMMARY line for one import run.

    `version` is '-' and `imported` is 0 when nothing was published
    (validate-only runs, fatal publish errors).

    Examples:
        >>> render_summary_line(ValidationSummary(analyzed=3, valid=2, errors=1))
        'SUMMARY analyzed=3 valid=2 errors=1 warnings=0 infos=0 version=- imported=0'
    """
    version = str(publish.version_number) if publish is not None else "-"
    imported = publish.imported_count if publish is not None else 0
    return (
        f"SUMMARY analyzed={summary.analyzed} "
        f"valid={summary.valid} "
        f"errors={summary.errors} "
        f"warnings={summary.warnings} "
        f"infos={summary.infos} "
        f"version={version} "
        f"imported={imported}"
    )
