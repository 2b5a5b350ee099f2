from __future__ import annotations

import re
from dataclasses import replace
from typing import NamedTuple

from ..models.config_models import ImportOptions
from ..models.issue import CorrectionSuggestion, CorrectionType
from ..models.records import NormalizedBatch, ProcessoRecord, SourceRef, TestemunhaRecord
from ..validation.cnj import (
    BODY_LENGTH,
    CNJ_LENGTH,
    body_of,
    check_digits,
    is_valid,
    only_digits,
    with_check_digits,
)

"""Correction suggestions for recoverable row errors.

Suggestions are deterministic: the same record always yields the same
suggestion with the same confidence. Nothing here mutates a batch;
apply_corrections builds a new one and the caller re-runs evaluation.

Confidence table:
    punctuated CNJ whose digits are valid      format        0.99
    18 digits, check pair missing              check_digits  0.95
    20 digits, wrong check pair                check_digits  0.90
    more than 20 digits, valid 20-digit prefix format        0.60
    reu parsed from "A vs B" / "A x B"         infer         0.60
    configured default reu                     default       0.90
"""

__all__ = [
    "suggest_cnj",
    "infer_reu",
    "suggest_corrections",
    "apply_corrections",
]

CONFIDENCE_FORMAT = 0.99
CONFIDENCE_INSERT_CHECK = 0.95
CONFIDENCE_RECOMPUTE_CHECK = 0.9
CONFIDENCE_TRUNCATE = 0.6
CONFIDENCE_INFER = 0.6
CONFIDENCE_DEFAULT = 0.9

_VERSUS_RE = re.compile(r"\s+(?:vs\.?|versus|x)\s+", re.IGNORECASE)


class CnjFix(NamedTuple):
    value: str
    correction_type: CorrectionType
    reason: str
    confidence: float


def suggest_cnj(value: str | None) -> CnjFix | None:
    """Best recovery for one process number, or None when nothing applies."""
    if not value:
        return None
    digits = only_digits(value)
    if len(digits) == CNJ_LENGTH and is_valid(digits):
        if digits == value:
            return None
        return CnjFix(digits, CorrectionType.FORMAT, "removed punctuation", CONFIDENCE_FORMAT)
    if len(digits) == BODY_LENGTH:
        return CnjFix(
            with_check_digits(digits),
            CorrectionType.CHECK_DIGITS,
            "inserted missing check digits",
            CONFIDENCE_INSERT_CHECK,
        )
    if len(digits) == CNJ_LENGTH:
        fixed = digits[:7] + check_digits(body_of(digits)) + digits[9:]
        return CnjFix(
            fixed,
            CorrectionType.CHECK_DIGITS,
            f"recomputed check digits {digits[7:9]} -> {fixed[7:9]}",
            CONFIDENCE_RECOMPUTE_CHECK,
        )
    if len(digits) > CNJ_LENGTH and is_valid(digits[:CNJ_LENGTH]):
        return CnjFix(
            digits[:CNJ_LENGTH],
            CorrectionType.FORMAT,
            f"dropped {len(digits) - CNJ_LENGTH} trailing digits",
            CONFIDENCE_TRUNCATE,
        )
    return None


def infer_reu(reclamante: str | None) -> str | None:
    """Defendant named after 'vs'/'x' in a claimant cell, if any."""
    if not reclamante:
        return None
    parts = _VERSUS_RE.split(reclamante, maxsplit=1)
    if len(parts) != 2:
        return None
    reu = parts[1].strip()
    return reu or None


def _suggest_reu(
    record: ProcessoRecord | TestemunhaRecord,
    options: ImportOptions,
) -> CorrectionSuggestion | None:
    current = record.reu_nome
    if current:
        return None
    inferred = infer_reu(record.reclamante_nome)
    if inferred:
        return CorrectionSuggestion(
            row_ref=record.source,
            field="reu_nome",
            original_value=current,
            corrected_value=inferred,
            correction_type=CorrectionType.INFER,
            reason="defendant inferred from claimant name",
            confidence=CONFIDENCE_INFER,
            kind=record.kind,
        )
    if options.default_reu_name:
        return CorrectionSuggestion(
            row_ref=record.source,
            field="reu_nome",
            original_value=current,
            corrected_value=options.default_reu_name.strip(),
            correction_type=CorrectionType.DEFAULT,
            reason="configured default defendant",
            confidence=CONFIDENCE_DEFAULT,
            kind=record.kind,
        )
    return None


def _cnj_suggestion(
    record: ProcessoRecord | TestemunhaRecord,
    value: str | None,
) -> CorrectionSuggestion | None:
    fix = suggest_cnj(value)
    if fix is None:
        return None
    return CorrectionSuggestion(
        row_ref=record.source,
        field="cnj",
        original_value=value,
        corrected_value=fix.value,
        correction_type=fix.correction_type,
        reason=fix.reason,
        confidence=fix.confidence,
        kind=record.kind,
    )


def _list_suggestion(record: TestemunhaRecord) -> CorrectionSuggestion | None:
    """One suggestion for the whole witness list; confidence is its weakest fix."""
    fixes = [suggest_cnj(e) for e in record.cnjs_como_testemunha]
    applied = [f for f in fixes if f is not None]
    if not applied:
        return None
    corrected = tuple(f.value if f is not None else e for e, f in zip(record.cnjs_como_testemunha, fixes))
    weakest = min(applied, key=lambda f: f.confidence)
    return CorrectionSuggestion(
        row_ref=record.source,
        field="cnjs_como_testemunha",
        original_value=record.cnjs_como_testemunha,
        corrected_value=corrected,
        correction_type=weakest.correction_type,
        reason="; ".join(f.reason for f in applied),
        confidence=weakest.confidence,
        kind=record.kind,
    )


def _processo_suggestions(record: ProcessoRecord, options: ImportOptions) -> list[CorrectionSuggestion]:
    # cnj is capped at 20 characters; cnj_digits still shows an overlong input
    overlong = len(record.cnj_digits) > CNJ_LENGTH
    found = [
        _cnj_suggestion(record, record.cnj_digits if overlong else record.cnj),
        _suggest_reu(record, options),
    ]
    return [s for s in found if s is not None]


def _testemunha_suggestions(record: TestemunhaRecord, options: ImportOptions) -> list[CorrectionSuggestion]:
    if record.exploded:
        ident = _cnj_suggestion(record, record.cnj)
    else:
        ident = _list_suggestion(record)
    found = [ident, _suggest_reu(record, options)]
    return [s for s in found if s is not None]


def suggest_corrections(batch: NormalizedBatch, options: ImportOptions) -> tuple[CorrectionSuggestion, ...]:
    if not options.intelligent_corrections:
        return ()
    suggestions: list[CorrectionSuggestion] = []
    for p in batch.processos:
        suggestions.extend(_processo_suggestions(p, options))
    for t in batch.testemunhas:
        suggestions.extend(_testemunha_suggestions(t, options))
    return tuple(suggestions)


def _index(
    suggestions: tuple[CorrectionSuggestion, ...] | list[CorrectionSuggestion],
    min_confidence: float,
) -> dict[tuple[str, SourceRef, str], CorrectionSuggestion]:
    chosen: dict[tuple[str, SourceRef, str], CorrectionSuggestion] = {}
    for s in suggestions:
        if s.confidence < min_confidence:
            continue
        # highest confidence wins; ties keep the first one seen
        if s.key not in chosen or s.confidence > chosen[s.key].confidence:
            chosen[s.key] = s
    return chosen


def _apply_processo(record: ProcessoRecord, chosen: dict) -> ProcessoRecord:
    changes: dict = {}
    autofilled = set(record.autofilled)
    cnj = chosen.get((record.kind, record.source, "cnj"))
    if cnj is not None:
        changes["cnj"] = cnj.corrected_value
        changes["cnj_digits"] = only_digits(cnj.corrected_value)
    reu = chosen.get((record.kind, record.source, "reu_nome"))
    if reu is not None:
        changes["reu_nome"] = reu.corrected_value
        if reu.correction_type is CorrectionType.DEFAULT:
            autofilled.add("reu_nome")
    if not changes:
        return record
    return replace(record, autofilled=frozenset(autofilled), **changes)


def _apply_testemunha(record: TestemunhaRecord, chosen: dict) -> TestemunhaRecord:
    changes: dict = {}
    autofilled = set(record.autofilled)
    field_name = "cnj" if record.exploded else "cnjs_como_testemunha"
    ident = chosen.get((record.kind, record.source, field_name))
    if ident is not None:
        changes[field_name] = ident.corrected_value
    reu = chosen.get((record.kind, record.source, "reu_nome"))
    if reu is not None:
        changes["reu_nome"] = reu.corrected_value
        if reu.correction_type is CorrectionType.DEFAULT:
            autofilled.add("reu_nome")
    if not changes:
        return record
    return replace(record, autofilled=frozenset(autofilled), **changes)


def apply_corrections(
    batch: NormalizedBatch,
    suggestions: tuple[CorrectionSuggestion, ...] | list[CorrectionSuggestion],
    min_confidence: float = 0.0,
) -> NormalizedBatch:
    """Return a new batch with every suggestion at or above min_confidence applied."""
    chosen = _index(suggestions, min_confidence)
    if not chosen:
        return batch
    return NormalizedBatch(
        processos=tuple(_apply_processo(p, chosen) for p in batch.processos),
        testemunhas=tuple(_apply_testemunha(t, chosen) for t in batch.testemunhas),
    )
