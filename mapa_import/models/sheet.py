from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import UnknownSheetError

"""Sheet-level domain models: decoded sheets, detection output and sessions."""

__all__ = [
    "SheetModel",
    "RawSheet",
    "DetectedSheet",
    "ImportSession",
]


class SheetModel(Enum):
    """Canonical record shape a spreadsheet tab represents.

    AMBIGUOUS sheets need an externally resolved override before they can be
    normalized.
    """
    PROCESSO = "processo"
    TESTEMUNHA = "testemunha"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class RawSheet:
    """Decoder output for one tab: header row plus raw data rows."""
    name: str
    headers: list[str]
    rows: list[list[Any]] = field(default_factory=list)


@dataclass(frozen=True)
class DetectedSheet:
    name: str
    model: SheetModel
    headers: tuple[str, ...]
    row_count: int
    has_list_column: bool = False

    def with_model(self, model: SheetModel) -> DetectedSheet:
        """Return a copy carrying a manually resolved model."""
        return replace(self, model=model)


@dataclass(frozen=True)
class ImportSession:
    """Provenance for one uploaded file.

    session_id is the SHA-256 digest of the file bytes and doubles as the
    idempotency checksum for staging.
    """
    file_name: str
    file_size: int
    sheets: tuple[DetectedSheet, ...]
    uploaded_at: datetime
    session_id: str

    def sheet(self, name: str) -> DetectedSheet:
        for s in self.sheets:
            if s.name == name:
                return s
        raise KeyError(name)

    def with_overrides(self, overrides: dict[str, SheetModel]) -> ImportSession:
        """Apply manual model mapping without re-running detection."""
        unknown = set(overrides) - {s.name for s in self.sheets}
        if unknown:
            raise UnknownSheetError(f"unknown sheets in override: {sorted(unknown)}")
        sheets = tuple(
            s.with_model(overrides[s.name]) if s.name in overrides else s
            for s in self.sheets
        )
        return replace(self, sheets=sheets)
