from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable

from ..errors import MissingColumnsError
from ..models.config_models import ImportOptions
from ..models.issue import Issue, Severity, ValidationResult, ValidationSummary
from ..models.records import NormalizedBatch, ProcessoRecord, SourceRef, TestemunhaRecord
from ..models.sheet import DetectedSheet, SheetModel
from ..validation.cnj import CNJ_LENGTH, is_valid, only_digits
from .corrections import suggest_corrections
from .normalizer import FIELD_LABELS, map_headers

"""Issue engine: row rules, header checks and the summary reducer.

Every rule runs on every record; a record is rejected when at least one of its
issues is an error. Issues are collected per record and reduced once, sorted,
so the order in which records are visited never changes the result.
"""

__all__ = [
    "REQUIRED_FIELDS",
    "check_headers",
    "sheet_issue",
    "evaluate",
]

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: dict[SheetModel, tuple[str, ...]] = {
    SheetModel.PROCESSO: ("cnj", "reclamante_nome", "reu_nome"),
    SheetModel.TESTEMUNHA: ("nome_testemunha", "cnjs_como_testemunha"),
}

RULE_REQUIRED = "required field missing"
RULE_CNJ_INVALID = "invalid CNJ check digits"
RULE_CNJ_TOO_LONG = "CNJ with more than 20 digits"
RULE_LIST_EMPTY = "witness CNJ list is empty"
RULE_LIST_NO_CNJ = "no CNJ with 20 digits"
RULE_LIST_ELEMENT = "CNJ element without 20 digits"
RULE_ELEMENT_CHECK = "CNJ element with invalid check digits"
RULE_MISSING_COMARCA = "comarca not informed"
RULE_MISSING_STATUS = "status not informed"
RULE_MISSING_REU = "reu not informed for witness"
RULE_DUPLICATE_CNJ = "duplicate CNJ"
RULE_DUPLICATE_PAIR = "duplicate witness for CNJ"
RULE_MISSING_PROCESSO = "witness CNJ not found among processos"
RULE_AUTOFILLED = "value filled from default"


def check_headers(sheet: DetectedSheet, model: SheetModel) -> None:
    """Raise MissingColumnsError naming every required column the sheet lacks."""
    mapping = map_headers(sheet.headers, model)
    missing = [FIELD_LABELS[f] for f in REQUIRED_FIELDS[model] if f not in mapping]
    if missing:
        raise MissingColumnsError(sheet.name, missing)


def sheet_issue(sheet: str, column: str, rule: str, value: object = None) -> Issue:
    """Sheet-level error (row 0) for findings that reject a whole tab."""
    return Issue(sheet=sheet, row=0, column=column, severity=Severity.ERROR, rule=rule, value=value)


def _is_twenty(value: str) -> bool:
    return len(value) == CNJ_LENGTH and value == only_digits(value)


def _issue(src: SourceRef, field_name: str, severity: Severity, rule: str, value: object = None, **kw) -> Issue:
    return Issue(
        sheet=src.sheet,
        row=src.row,
        column=FIELD_LABELS[field_name],
        severity=severity,
        rule=rule,
        value=value,
        **kw,
    )


def _autofill_issues(record: ProcessoRecord | TestemunhaRecord) -> list[Issue]:
    return [
        _issue(record.source, f, Severity.INFO, RULE_AUTOFILLED, getattr(record, f), autofilled=True)
        for f in sorted(record.autofilled)
    ]


def _processo_issues(record: ProcessoRecord) -> list[Issue]:
    src = record.source
    issues: list[Issue] = []
    for f in REQUIRED_FIELDS[SheetModel.PROCESSO]:
        if not getattr(record, f):
            issues.append(_issue(src, f, Severity.ERROR, RULE_REQUIRED))
    if len(record.cnj_digits) > CNJ_LENGTH:
        issues.append(_issue(src, "cnj", Severity.ERROR, RULE_CNJ_TOO_LONG, record.cnj_digits))
    elif record.cnj and not is_valid(record.cnj):
        issues.append(_issue(src, "cnj", Severity.ERROR, RULE_CNJ_INVALID, record.cnj))
    if not record.comarca:
        issues.append(_issue(src, "comarca", Severity.WARNING, RULE_MISSING_COMARCA))
    if not record.status:
        issues.append(_issue(src, "status", Severity.WARNING, RULE_MISSING_STATUS))
    issues.extend(_autofill_issues(record))
    return issues


def _identifier_issues(record: TestemunhaRecord) -> list[Issue]:
    src = record.source
    if record.exploded:
        cnj = record.cnj or ""
        if not _is_twenty(cnj):
            return [_issue(src, "cnjs_como_testemunha", Severity.ERROR, RULE_LIST_NO_CNJ, cnj)]
        if not is_valid(cnj):
            return [_issue(src, "cnjs_como_testemunha", Severity.WARNING, RULE_ELEMENT_CHECK, cnj)]
        return []

    elements = record.cnjs_como_testemunha
    if not elements:
        return [_issue(src, "cnjs_como_testemunha", Severity.ERROR, RULE_LIST_EMPTY)]
    twenty = [e for e in elements if _is_twenty(e)]
    if not twenty:
        return [_issue(src, "cnjs_como_testemunha", Severity.ERROR, RULE_LIST_NO_CNJ, list(elements))]
    issues = [
        _issue(src, "cnjs_como_testemunha", Severity.WARNING, RULE_LIST_ELEMENT, e)
        for e in elements
        if not _is_twenty(e)
    ]
    issues.extend(
        _issue(src, "cnjs_como_testemunha", Severity.WARNING, RULE_ELEMENT_CHECK, e)
        for e in twenty
        if not is_valid(e)
    )
    return issues


def _testemunha_issues(record: TestemunhaRecord) -> list[Issue]:
    src = record.source
    issues: list[Issue] = []
    if not record.nome_testemunha:
        issues.append(_issue(src, "nome_testemunha", Severity.ERROR, RULE_REQUIRED))
    issues.extend(_identifier_issues(record))
    if not record.reu_nome:
        issues.append(_issue(src, "reu_nome", Severity.WARNING, RULE_MISSING_REU))
    issues.extend(_autofill_issues(record))
    return issues


def _duplicate_issues(batch: NormalizedBatch) -> list[Issue]:
    """Warnings for repeated process numbers and repeated (CNJ, witness) pairs.

    The first occurrence is clean; every later one is flagged.
    """
    issues: list[Issue] = []
    seen_cnj: Counter[str] = Counter()
    for p in batch.processos:
        if not p.cnj_digits:
            continue
        seen_cnj[p.cnj_digits] += 1
        if seen_cnj[p.cnj_digits] > 1:
            issues.append(_issue(p.source, "cnj", Severity.WARNING, RULE_DUPLICATE_CNJ, p.cnj))

    seen_pair: Counter[tuple[str, str]] = Counter()
    for t in batch.testemunhas:
        name = t.nome_testemunha.casefold()
        if not name:
            continue
        for cnj in t.identifiers():
            pair = (only_digits(cnj), name)
            if not pair[0]:
                continue
            seen_pair[pair] += 1
            if seen_pair[pair] > 1:
                issues.append(
                    _issue(t.source, "nome_testemunha", Severity.WARNING, RULE_DUPLICATE_PAIR, t.nome_testemunha)
                )
    return issues


def _cross_sheet_issues(batch: NormalizedBatch) -> list[Issue]:
    """Warnings for witness CNJs that no processo of the batch carries.

    Skipped when the batch has no processos: a witness-only workbook refers to
    processos imported earlier.
    """
    if not batch.processos:
        return []
    known = {p.cnj_digits for p in batch.processos if p.cnj_digits}
    issues: list[Issue] = []
    for t in batch.testemunhas:
        for cnj in dict.fromkeys(t.identifiers()):
            if _is_twenty(cnj) and cnj not in known:
                value = {"cnj": cnj, "testemunha": t.nome_testemunha}
                issues.append(
                    _issue(t.source, "cnjs_como_testemunha", Severity.WARNING, RULE_MISSING_PROCESSO, value)
                )
    return issues


def _reduce(
    batch: NormalizedBatch,
    issues: Iterable[Issue],
    rejected: frozenset[tuple[str, SourceRef]],
) -> tuple[tuple[Issue, ...], ValidationSummary]:
    ordered = tuple(sorted(issues, key=Issue.sort_key))
    counts = Counter(i.severity for i in ordered)
    summary = ValidationSummary(
        analyzed=len(batch),
        valid=len(batch) - len(rejected),
        errors=counts[Severity.ERROR],
        warnings=counts[Severity.WARNING],
        infos=counts[Severity.INFO],
    )
    return ordered, summary


def evaluate(
    batch: NormalizedBatch,
    options: ImportOptions,
    sheet_issues: Iterable[Issue] = (),
) -> ValidationResult:
    """Run every rule on every record and reduce into a ValidationResult.

    Args:
        batch: Normalized records
        options: Import options; intelligent_corrections enables suggestions
        sheet_issues: Sheet-level findings raised before row evaluation

    Never raises for bad cells.
    """
    issues: list[Issue] = list(sheet_issues)
    rejected: set[tuple[str, SourceRef]] = set()

    for record in batch.records():
        if isinstance(record, ProcessoRecord):
            found = _processo_issues(record)
        else:
            found = _testemunha_issues(record)
        if any(i.severity is Severity.ERROR for i in found):
            rejected.add(record.key)
        issues.extend(found)
    issues.extend(_duplicate_issues(batch))
    issues.extend(_cross_sheet_issues(batch))

    frozen_rejected = frozenset(rejected)
    ordered, summary = _reduce(batch, issues, frozen_rejected)
    corrections = suggest_corrections(batch, options) if options.intelligent_corrections else ()
    logger.debug(
        "evaluated analyzed=%d valid=%d errors=%d warnings=%d infos=%d suggestions=%d",
        summary.analyzed,
        summary.valid,
        summary.errors,
        summary.warnings,
        summary.infos,
        len(corrections),
    )
    return ValidationResult(
        summary=summary,
        issues=ordered,
        normalized_data=batch,
        corrections=corrections,
        rejected=frozen_rejected,
    )
