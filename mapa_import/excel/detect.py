from __future__ import annotations

import hashlib
from collections.abc import Mapping
from datetime import UTC, datetime

from ..errors import EmptyWorkbookError
from ..models.sheet import DetectedSheet, ImportSession, RawSheet, SheetModel

"""Structure detector: classify each decoded sheet by its header set.

Only the header row is inspected. Headers are lower-cased and trimmed, and a
sheet matches a model when its headers are a superset of that model's set.
"""

__all__ = [
    "PROCESSO_HEADERS",
    "TESTEMUNHA_HEADERS",
    "LIST_HEADERS",
    "classify_headers",
    "detect",
    "build_session",
]

PROCESSO_HEADERS = frozenset({"cnj", "reclamante_limpo", "reu_nome"})
TESTEMUNHA_HEADERS = frozenset({"nome_testemunha", "cnjs_como_testemunha"})
LIST_HEADERS = frozenset({
    "cnjs_como_testemunha",
    "advogados_ativo",
    "advogados_passivo",
    "testemunhas_ativo",
    "testemunhas_passivo",
    "todas_testemunhas",
})


def _header_set(headers: list[str] | tuple[str, ...]) -> set[str]:
    return {str(h).strip().lower() for h in headers}


def classify_headers(headers: list[str] | tuple[str, ...]) -> SheetModel:
    found = _header_set(headers)
    is_processo = PROCESSO_HEADERS <= found
    is_testemunha = TESTEMUNHA_HEADERS <= found
    if is_processo and not is_testemunha:
        return SheetModel.PROCESSO
    if is_testemunha and not is_processo:
        return SheetModel.TESTEMUNHA
    return SheetModel.AMBIGUOUS


def detect(raw_sheets: Mapping[str, RawSheet]) -> list[DetectedSheet]:
    """Classify every sheet in workbook order.

    Raises:
        EmptyWorkbookError: when the workbook has no sheets
    """
    if not raw_sheets:
        raise EmptyWorkbookError("workbook contains no sheets")
    detected: list[DetectedSheet] = []
    for name, raw in raw_sheets.items():
        headers = tuple(raw.headers)
        detected.append(
            DetectedSheet(
                name=name,
                model=classify_headers(headers),
                headers=headers,
                row_count=len(raw.rows),
                has_list_column=bool(_header_set(headers) & LIST_HEADERS),
            )
        )
    return detected


def build_session(file_name: str, content: bytes, sheets: list[DetectedSheet]) -> ImportSession:
    return ImportSession(
        file_name=file_name,
        file_size=len(content),
        sheets=tuple(sheets),
        uploaded_at=datetime.now(UTC),
        session_id=hashlib.sha256(content).hexdigest(),
    )
