from __future__ import annotations

"""Exception taxonomy for the import pipeline.

Structural errors abort a run and need a new file. Row-level problems are never
raised; they are collected as Issues. Publish errors split into transient
(retried with backoff) and terminal (never retried).
"""

__all__ = [
    "StructuralError",
    "EmptyWorkbookError",
    "UnreadableWorkbookError",
    "MissingColumnsError",
    "NoUsableSheetsError",
    "PublishError",
    "TransientPublishError",
    "StageTimeoutError",
    "TerminalPublishError",
    "RetriesExhaustedError",
    "StageCancelledError",
    "StaleStageError",
    "UnknownSheetError",
]


class StructuralError(Exception):
    """Base class for failures that make the whole workbook unusable."""


class EmptyWorkbookError(StructuralError):
    """Raised when a workbook contains no sheets at all."""


class UnreadableWorkbookError(StructuralError):
    """Raised when the decoder cannot parse the uploaded bytes."""


class MissingColumnsError(StructuralError):
    """Raised when a sheet lacks columns required by its model."""

    def __init__(self, sheet: str, missing: list[str]) -> None:
        self.sheet = sheet
        self.missing = missing
        super().__init__(f"sheet '{sheet}' missing columns: {missing}")


class NoUsableSheetsError(StructuralError):
    """Raised when every sheet was rejected before row evaluation."""


class PublishError(Exception):
    """Base class for publisher failures."""


class TransientPublishError(PublishError):
    """Timeout, connection reset or server-side hiccup. Safe to retry."""


class StageTimeoutError(TransientPublishError):
    pass


class TerminalPublishError(PublishError):
    """Row-count mismatch, invalid state transition or storage rejection."""


class RetriesExhaustedError(TerminalPublishError):
    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


class StageCancelledError(TerminalPublishError):
    pass


class StaleStageError(TerminalPublishError):
    """The stage attempt was superseded by a newer one, or the version left draft."""


class UnknownSheetError(ValueError):
    """A manual model override names a sheet the workbook does not have."""
