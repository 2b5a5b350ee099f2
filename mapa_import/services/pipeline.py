from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path

from ..db.version_store import VersionStore
from ..errors import MissingColumnsError, NoUsableSheetsError
from ..excel.detect import build_session, detect
from ..excel.reader import read_workbook
from ..logging.issue_log import IssueLogBuffer
from ..models.config_models import ImportConfig, ImportOptions
from ..models.issue import Issue, ValidationResult
from ..models.records import NormalizedBatch
from ..models.sheet import ImportSession, RawSheet, SheetModel
from ..models.version import PublishResult, Version
from .corrections import apply_corrections
from .engine import check_headers, evaluate, sheet_issue
from .normalizer import normalize
from .publisher import VersionPublisher

"""Import pipeline: decode -> detect -> normalize -> evaluate -> stage -> publish.

Phases run strictly one after another. State is threaded explicitly through
ImportSession, ValidationResult and Version; nothing is kept between calls.
"""

__all__ = [
    "ImportOutcome",
    "validate_content",
    "validate_workbook",
    "revalidate",
    "run_import",
]

logger = logging.getLogger(__name__)

RULE_AMBIGUOUS = "ambiguous sheet model; map the sheet to processo or testemunha"
RULE_MISSING_COLUMNS = "missing required columns"


@dataclass(frozen=True)
class ImportOutcome:
    session: ImportSession
    validation: ValidationResult
    version: Version | None = None
    publish: PublishResult | None = None
    issue_log: Path | None = None


def _sheet_level(session: ImportSession) -> tuple[ImportSession, list[Issue]]:
    """Drop sheets that cannot be evaluated, reporting each as a row-0 error."""
    issues: list[Issue] = []
    usable = []
    for sheet in session.sheets:
        if sheet.model is SheetModel.AMBIGUOUS:
            issues.append(sheet_issue(sheet.name, "*", RULE_AMBIGUOUS, list(sheet.headers)))
            continue
        try:
            check_headers(sheet, sheet.model)
        except MissingColumnsError as e:
            logger.warning(f"sheet '{sheet.name}' skipped: missing {', '.join(e.missing)}")
            issues.append(sheet_issue(sheet.name, ", ".join(e.missing), RULE_MISSING_COLUMNS, e.missing))
            continue
        usable.append(sheet)
    if not usable:
        raise NoUsableSheetsError(f"{session.file_name}: no sheet matches a processo or testemunha layout")
    return replace(session, sheets=tuple(usable)), issues


def validate_content(
    content: bytes,
    file_name: str,
    raw_sheets: Mapping[str, RawSheet],
    options: ImportOptions,
    overrides: Mapping[str, SheetModel] | None = None,
) -> tuple[ImportSession, ValidationResult]:
    """Validate already decoded sheets.

    Raises:
        EmptyWorkbookError: no sheets
        NoUsableSheetsError: every sheet was ambiguous or missing columns
    """
    session = build_session(file_name, content, detect(raw_sheets))
    if overrides:
        session = session.with_overrides(dict(overrides))
    for sheet in session.sheets:
        logger.info(f"sheet '{sheet.name}': model={sheet.model.value} rows={sheet.row_count}")

    usable, sheet_issues = _sheet_level(session)
    batch = normalize(usable, raw_sheets, options)
    return session, evaluate(batch, options, sheet_issues)


def validate_workbook(
    path: Path,
    options: ImportOptions,
    overrides: Mapping[str, SheetModel] | None = None,
) -> tuple[ImportSession, ValidationResult]:
    content, raw_sheets = read_workbook(path)
    return validate_content(content, path.name, raw_sheets, options, overrides)


def revalidate(
    result: ValidationResult,
    batch: NormalizedBatch,
    options: ImportOptions,
) -> ValidationResult:
    """Fresh ValidationResult for a corrected batch; sheet-level issues carry over."""
    sheet_issues = [i for i in result.issues if i.row == 0]
    return evaluate(batch, options, sheet_issues)


def run_import(
    path: Path,
    config: ImportConfig,
    store: VersionStore,
    overrides: Mapping[str, SheetModel] | None = None,
    apply_suggestions: bool = False,
    min_confidence: float = 0.0,
    validate_only: bool = False,
    cancel_event: threading.Event | None = None,
) -> ImportOutcome:
    """Validate a workbook and publish its error-free rows as a new version.

    Nothing is published when validate_only is set or no row is valid.
    Raises StructuralError and TerminalPublishError subclasses.
    """
    options = config.options
    session, result = validate_workbook(path, options, overrides)

    if apply_suggestions and result.corrections:
        corrected = apply_corrections(result.normalized_data, result.corrections, min_confidence)
        result = revalidate(result, corrected, options)
        logger.info(f"corrections applied (min_confidence={min_confidence}); valid={result.summary.valid}")

    issue_buffer = IssueLogBuffer(config.issue_log_directory)
    issue_buffer.extend(result.issues)
    issue_log = issue_buffer.flush()
    if issue_log is not None:
        logger.info(f"issues written to {issue_log}")

    if validate_only:
        return ImportOutcome(session=session, validation=result, issue_log=issue_log)
    if result.summary.valid == 0:
        logger.warning("no valid rows; nothing to publish")
        return ImportOutcome(session=session, validation=result, issue_log=issue_log)

    publisher = VersionPublisher(store, config.publisher)
    version = publisher.create_version(session.file_name)
    publisher.stage(
        version.version_id,
        result.publishable(),
        session.session_id,
        session.file_name,
        cancel_event=cancel_event,
    )
    published = publisher.publish(version.version_id, result.summary.valid)
    return ImportOutcome(
        session=session,
        validation=result,
        version=store.get(version.version_id),
        publish=published,
        issue_log=issue_log,
    )
