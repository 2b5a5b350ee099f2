from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from .records import NormalizedBatch, SourceRef

"""Validation findings, correction suggestions and the aggregated result.

Issue adheres to a fixed JSON Lines contract (see to_json_line): no extra keys
are emitted so downstream consumers can rely on the shape.
"""

__all__ = [
    "Severity",
    "Issue",
    "CorrectionType",
    "CorrectionSuggestion",
    "ValidationSummary",
    "ValidationResult",
]


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}


@dataclass(frozen=True)
class Issue:
    """Single cell-addressed validation finding.

    Attributes:
        sheet: Sheet name
        row: Spreadsheet row number. 0 marks a sheet-level (header) finding
        column: Column label the finding refers to
        severity: error blocks the row; warning/info never do
        rule: Human readable rule description
        value: Offending cell value (JSON serialisable)
        autofilled: True when the value came from a configured default
    """
    sheet: str
    row: int
    column: str
    severity: Severity
    rule: str
    value: Any = None
    autofilled: bool = False

    def sort_key(self) -> tuple[Any, ...]:
        return (self.sheet, self.row, self.column, self.severity.rank, self.rule, repr(self.value))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        if isinstance(self.value, tuple):
            data["value"] = list(self.value)
        return data

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


class CorrectionType(Enum):
    FORMAT = "format"
    CHECK_DIGITS = "check_digits"
    INFER = "infer"
    DEFAULT = "default"


@dataclass(frozen=True)
class CorrectionSuggestion:
    """Proposed fix for one field of one record; never applied implicitly."""
    row_ref: SourceRef
    field: str
    original_value: Any
    corrected_value: Any
    correction_type: CorrectionType
    reason: str
    confidence: float
    kind: str  # record kind; a processo and a testemunha can share a SourceRef

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def key(self) -> tuple[str, SourceRef, str]:
        return (self.kind, self.row_ref, self.field)


@dataclass(frozen=True)
class ValidationSummary:
    analyzed: int = 0
    valid: int = 0
    errors: int = 0
    warnings: int = 0
    infos: int = 0

    @property
    def rejected(self) -> int:
        return self.analyzed - self.valid


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one (re)validation pass. Rebuilt on every pass."""
    summary: ValidationSummary
    issues: tuple[Issue, ...]
    normalized_data: NormalizedBatch
    corrections: tuple[CorrectionSuggestion, ...] = ()
    rejected: frozenset[tuple[str, SourceRef]] = field(default_factory=frozenset)

    @property
    def has_errors(self) -> bool:
        return self.summary.errors > 0

    def publishable(self) -> NormalizedBatch:
        """Rows carrying no error; their count equals summary.valid."""
        return NormalizedBatch(
            processos=tuple(r for r in self.normalized_data.processos if r.key not in self.rejected),
            testemunhas=tuple(r for r in self.normalized_data.testemunhas if r.key not in self.rejected),
        )
