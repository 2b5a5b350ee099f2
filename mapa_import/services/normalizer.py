from __future__ import annotations

import json
import logging
import re
import unicodedata
from collections.abc import Mapping
from typing import Any

from ..excel.detect import PROCESSO_HEADERS, TESTEMUNHA_HEADERS
from ..excel.reader import cell_text
from ..models.config_models import ImportOptions
from ..models.records import NormalizedBatch, ProcessoRecord, SourceRef, TestemunhaRecord
from ..models.sheet import DetectedSheet, ImportSession, RawSheet, SheetModel
from ..validation.cnj import CNJ_LENGTH, only_digits

"""Canonical normalizer: raw sheet rows -> ProcessoRecord / TestemunhaRecord.

Responsibilities:
- map sheet headers onto canonical field names (synonym table, slug match)
- parse list cells ("a;b", "a, b", "['a','b']") and optionally explode the
  witness CNJ list into one record per element
- canonicalize process numbers (digits only) when standardize_cnj is set;
  a processo cnj is capped at 20 characters while cnj_digits and witness
  list elements keep every digit for the engine to judge
- fill a blank Reu_Nome from the configured default, tagging it autofilled

A bad cell never fails the batch: it degrades to an empty/raw value and the
engine reports it.
"""

__all__ = [
    "FIELD_LABELS",
    "slugify",
    "parse_list",
    "map_headers",
    "normalize",
    "normalize_sheet",
]

logger = logging.getLogger(__name__)

# canonical field -> accepted header slugs (first entry is the template name)
PROCESSO_SYNONYMS: dict[str, tuple[str, ...]] = {
    "cnj": ("cnj", "numero_cnj", "num_cnj", "numero_processo", "num_processo"),
    "reclamante_nome": ("reclamante_limpo", "reclamante_nome", "nome_reclamante", "reclamante", "autor"),
    "reu_nome": ("reu_nome", "nome_reu", "reu", "reclamado", "requerido"),
    "uf": ("uf", "estado", "sigla_estado"),
    "comarca": ("comarca", "foro", "municipio"),
    "tribunal": ("tribunal", "trt"),
    "vara": ("vara", "orgao_julgador"),
    "fase": ("fase", "fase_processual"),
    "status": ("status", "situacao"),
    "data_audiencia": ("data_audiencia", "audiencia"),
    "advogados_ativo": ("advogados_ativo", "advogados_polo_ativo", "advogado_autor"),
    "advogados_passivo": ("advogados_passivo", "advogados_polo_passivo", "advogado_reu"),
    "testemunhas_ativo": ("testemunhas_ativo", "testemunhas_autor"),
    "testemunhas_passivo": ("testemunhas_passivo", "testemunhas_reu"),
    "todas_testemunhas": ("todas_testemunhas", "testemunhas", "lista_testemunhas"),
    "observacoes": ("observacoes", "obs", "notas"),
}

TESTEMUNHA_SYNONYMS: dict[str, tuple[str, ...]] = {
    "nome_testemunha": ("nome_testemunha", "testemunha", "nome"),
    "cnjs_como_testemunha": ("cnjs_como_testemunha", "cnjs_testemunha", "processos_como_testemunha"),
    "reclamante_nome": ("reclamante_nome", "reclamante_limpo", "reclamante"),
    "reu_nome": ("reu_nome", "reu", "reclamado"),
}

# canonical field -> column label used when addressing Issues
FIELD_LABELS: dict[str, str] = {
    "cnj": "CNJ",
    "reclamante_nome": "Reclamante_Limpo",
    "reu_nome": "Reu_Nome",
    "uf": "UF",
    "comarca": "Comarca",
    "tribunal": "Tribunal",
    "vara": "Vara",
    "fase": "Fase",
    "status": "Status",
    "data_audiencia": "Data_Audiencia",
    "advogados_ativo": "Advogados_Ativo",
    "advogados_passivo": "Advogados_Passivo",
    "testemunhas_ativo": "Testemunhas_Ativo",
    "testemunhas_passivo": "Testemunhas_Passivo",
    "todas_testemunhas": "Todas_Testemunhas",
    "observacoes": "Observacoes",
    "nome_testemunha": "Nome_Testemunha",
    "cnjs_como_testemunha": "CNJs_Como_Testemunha",
}

PROCESSO_LIST_FIELDS = (
    "advogados_ativo",
    "advogados_passivo",
    "testemunhas_ativo",
    "testemunhas_passivo",
    "todas_testemunhas",
)

_LIST_SPLIT_RE = re.compile(r"[;,]")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: Any) -> str:
    """Accent-free snake_case slug of a header ("Réu Nome" -> "reu_nome")."""
    if text is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _SLUG_RE.sub("_", stripped.lower()).strip("_")


def parse_list(value: Any) -> list[str]:
    """Parse a list cell into trimmed, non-empty elements.

    Bracketed input is tried as JSON first (single quotes accepted); anything
    that does not decode to a list falls back to splitting on ';' or ','.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [s for s in (cell_text(v) for v in value) if s]
    text = cell_text(value)
    if not text or text == "[]":
        return []
    if text.startswith("[") and text.endswith("]"):
        try:
            decoded = json.loads(text.replace("'", '"'))
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, list):
            return [s for s in (cell_text(v) for v in decoded) if s]
        text = text[1:-1]
    return [part.strip() for part in _LIST_SPLIT_RE.split(text) if part.strip()]


def map_headers(headers: list[str] | tuple[str, ...], model: SheetModel) -> dict[str, int]:
    """Return canonical field -> column index for the given model.

    Exact slug matches win over synonyms; the first matching column is used.
    """
    synonyms = PROCESSO_SYNONYMS if model is SheetModel.PROCESSO else TESTEMUNHA_SYNONYMS
    slugs = [slugify(h) for h in headers]
    mapping: dict[str, int] = {}
    for field_name, accepted in synonyms.items():
        for candidate in accepted:
            if candidate in slugs:
                mapping[field_name] = slugs.index(candidate)
                break
    return mapping


def _canonical_cnj(raw: str, options: ImportOptions, truncate: bool = True) -> str:
    if not options.standardize_cnj:
        return raw
    digits = only_digits(raw)
    return digits[:CNJ_LENGTH] if truncate else digits


def _cell(row: list[Any], mapping: dict[str, int], field_name: str) -> Any:
    idx = mapping.get(field_name)
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def _text(row: list[Any], mapping: dict[str, int], field_name: str) -> str:
    return cell_text(_cell(row, mapping, field_name))


def _optional(row: list[Any], mapping: dict[str, int], field_name: str) -> str | None:
    return _text(row, mapping, field_name) or None


def _default_reu(current: str, options: ImportOptions) -> tuple[str, bool]:
    if current or not options.apply_default_reu or not options.default_reu_name:
        return current, False
    return options.default_reu_name.strip(), True


def _processo_rows(sheet_name: str, raw: RawSheet, options: ImportOptions) -> list[ProcessoRecord]:
    mapping = map_headers(raw.headers, SheetModel.PROCESSO)
    records: list[ProcessoRecord] = []
    for index, row in enumerate(raw.rows):
        raw_cnj = _text(row, mapping, "cnj")
        cnj = _canonical_cnj(raw_cnj, options)
        reu, filled = _default_reu(_text(row, mapping, "reu_nome"), options)
        lists = {f: tuple(parse_list(_cell(row, mapping, f))) for f in PROCESSO_LIST_FIELDS}
        records.append(
            ProcessoRecord(
                cnj=cnj,
                cnj_digits=only_digits(raw_cnj),
                reclamante_nome=_text(row, mapping, "reclamante_nome"),
                reu_nome=reu,
                uf=_optional(row, mapping, "uf"),
                comarca=_optional(row, mapping, "comarca"),
                tribunal=_optional(row, mapping, "tribunal"),
                vara=_optional(row, mapping, "vara"),
                fase=_optional(row, mapping, "fase"),
                status=_optional(row, mapping, "status"),
                data_audiencia=_optional(row, mapping, "data_audiencia"),
                observacoes=_optional(row, mapping, "observacoes"),
                autofilled=frozenset({"reu_nome"}) if filled else frozenset(),
                source=SourceRef(sheet_name, index + 2),
                **lists,
            )
        )
    return records


def _testemunha_rows(sheet_name: str, raw: RawSheet, options: ImportOptions) -> list[TestemunhaRecord]:
    mapping = map_headers(raw.headers, SheetModel.TESTEMUNHA)
    records: list[TestemunhaRecord] = []
    for index, row in enumerate(raw.rows):
        elements = parse_list(_cell(row, mapping, "cnjs_como_testemunha"))
        cnjs = tuple(_canonical_cnj(c, options, truncate=False) for c in elements)
        cnjs = tuple(c for c in cnjs if c)
        reu, filled = _default_reu(_text(row, mapping, "reu_nome"), options)
        base = dict(
            nome_testemunha=_text(row, mapping, "nome_testemunha"),
            reclamante_nome=_optional(row, mapping, "reclamante_nome"),
            reu_nome=reu or None,
            autofilled=frozenset({"reu_nome"}) if filled else frozenset(),
        )
        row_number = index + 2
        if options.explode_lists and cnjs:
            for item, cnj in enumerate(cnjs):
                records.append(
                    TestemunhaRecord(
                        cnjs_como_testemunha=(),
                        cnj=cnj,
                        source=SourceRef(sheet_name, row_number, item),
                        **base,
                    )
                )
        else:
            records.append(
                TestemunhaRecord(
                    cnjs_como_testemunha=cnjs,
                    source=SourceRef(sheet_name, row_number),
                    **base,
                )
            )
    return records


def _shapes_for(sheet: DetectedSheet) -> list[SheetModel]:
    """Shapes a sheet yields: its model first, plus the other shape when the
    headers carry that model's full header set too."""
    found = {h.strip().lower() for h in sheet.headers}
    shapes = [sheet.model]
    if sheet.model is SheetModel.PROCESSO and TESTEMUNHA_HEADERS <= found:
        shapes.append(SheetModel.TESTEMUNHA)
    elif sheet.model is SheetModel.TESTEMUNHA and PROCESSO_HEADERS <= found:
        shapes.append(SheetModel.PROCESSO)
    return shapes


def normalize_sheet(sheet: DetectedSheet, raw: RawSheet, options: ImportOptions) -> NormalizedBatch:
    if sheet.model is SheetModel.AMBIGUOUS:
        raise ValueError(f"sheet '{sheet.name}' is ambiguous; resolve its model first")
    processos: list[ProcessoRecord] = []
    testemunhas: list[TestemunhaRecord] = []
    for shape in _shapes_for(sheet):
        if shape is SheetModel.PROCESSO:
            processos.extend(_processo_rows(sheet.name, raw, options))
        else:
            testemunhas.extend(_testemunha_rows(sheet.name, raw, options))
    return NormalizedBatch(processos=tuple(processos), testemunhas=tuple(testemunhas))


def normalize(
    session: ImportSession,
    raw_rows: Mapping[str, RawSheet],
    options: ImportOptions,
) -> NormalizedBatch:
    """Normalize every resolved sheet of the session, in workbook order.

    Ambiguous sheets are skipped; the pipeline reports them before calling
    this function.
    """
    if options.apply_default_reu and not options.default_reu_name:
        logger.warning("apply_default_reu is set but no default_reu_name configured")
    batch = NormalizedBatch()
    for sheet in session.sheets:
        if sheet.model is SheetModel.AMBIGUOUS:
            logger.debug("skipping ambiguous sheet %s", sheet.name)
            continue
        raw = raw_rows.get(sheet.name)
        if raw is None:
            continue
        batch = batch.merge(normalize_sheet(sheet, raw, options))
    return batch
