"""Domain models for the processo/testemunha import pipeline."""

from .config_models import DatabaseConfig, ImportConfig, ImportOptions, PublisherConfig
from .issue import (
    CorrectionSuggestion,
    CorrectionType,
    Issue,
    Severity,
    ValidationResult,
    ValidationSummary,
)
from .records import NormalizedBatch, NormalizedRecord, ProcessoRecord, SourceRef, TestemunhaRecord
from .sheet import DetectedSheet, ImportSession, RawSheet, SheetModel
from .version import PublishResult, StageResult, Version, VersionStatus

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "ImportOptions",
    "PublisherConfig",
    # Sheet models
    "DetectedSheet",
    "ImportSession",
    "RawSheet",
    "SheetModel",
    # Records
    "NormalizedBatch",
    "NormalizedRecord",
    "ProcessoRecord",
    "SourceRef",
    "TestemunhaRecord",
    # Validation
    "CorrectionSuggestion",
    "CorrectionType",
    "Issue",
    "Severity",
    "ValidationResult",
    "ValidationSummary",
    # Versions
    "PublishResult",
    "StageResult",
    "Version",
    "VersionStatus",
]
