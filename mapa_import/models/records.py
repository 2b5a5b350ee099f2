from __future__ import annotations

from collections.abc import Iterator
from dataclasses import asdict, dataclass, field
from typing import Any, Union

"""Normalized record shapes (processo / testemunha).

The two shapes are closed frozen dataclasses; the sheet model decided by the
detector picks which one a row becomes. `source` is a diagnostic back-reference
only and is never fed back into a transformation.
"""

__all__ = [
    "SourceRef",
    "ProcessoRecord",
    "TestemunhaRecord",
    "NormalizedRecord",
    "NormalizedBatch",
]


@dataclass(frozen=True, order=True)
class SourceRef:
    sheet: str
    row: int  # spreadsheet row number, header is row 1
    item: int | None = None  # list element index when the row was exploded

    def __str__(self) -> str:
        base = f"{self.sheet}!{self.row}"
        return base if self.item is None else f"{base}[{self.item}]"


@dataclass(frozen=True)
class ProcessoRecord:
    cnj: str
    cnj_digits: str
    reclamante_nome: str
    reu_nome: str
    uf: str | None = None
    comarca: str | None = None
    tribunal: str | None = None
    vara: str | None = None
    fase: str | None = None
    status: str | None = None
    data_audiencia: str | None = None
    advogados_ativo: tuple[str, ...] = ()
    advogados_passivo: tuple[str, ...] = ()
    testemunhas_ativo: tuple[str, ...] = ()
    testemunhas_passivo: tuple[str, ...] = ()
    todas_testemunhas: tuple[str, ...] = ()
    observacoes: str | None = None
    autofilled: frozenset[str] = frozenset()
    source: SourceRef = field(default=SourceRef("", 0), compare=False)

    kind = "processo"

    @property
    def key(self) -> tuple[str, SourceRef]:
        return (self.kind, self.source)

    def to_row(self) -> dict[str, Any]:
        """Plain structured row handed to storage."""
        data = asdict(self)
        data.pop("source")
        data["autofilled"] = sorted(self.autofilled)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        return data


@dataclass(frozen=True)
class TestemunhaRecord:
    nome_testemunha: str
    cnjs_como_testemunha: tuple[str, ...] = ()
    cnj: str | None = None  # set when explode_lists produced this record
    reclamante_nome: str | None = None
    reu_nome: str | None = None
    autofilled: frozenset[str] = frozenset()
    source: SourceRef = field(default=SourceRef("", 0), compare=False)

    kind = "testemunha"
    __test__ = False  # keep pytest from collecting this class

    @property
    def key(self) -> tuple[str, SourceRef]:
        return (self.kind, self.source)

    @property
    def exploded(self) -> bool:
        return self.cnj is not None

    def identifiers(self) -> tuple[str, ...]:
        return (self.cnj,) if self.cnj is not None else self.cnjs_como_testemunha

    def to_row(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("source")
        data["autofilled"] = sorted(self.autofilled)
        data["cnjs_como_testemunha"] = list(self.cnjs_como_testemunha)
        return data


NormalizedRecord = Union[ProcessoRecord, TestemunhaRecord]


@dataclass(frozen=True)
class NormalizedBatch:
    processos: tuple[ProcessoRecord, ...] = ()
    testemunhas: tuple[TestemunhaRecord, ...] = ()

    def records(self) -> Iterator[NormalizedRecord]:
        yield from self.processos
        yield from self.testemunhas

    def __len__(self) -> int:
        return len(self.processos) + len(self.testemunhas)

    def merge(self, other: NormalizedBatch) -> NormalizedBatch:
        return NormalizedBatch(
            processos=self.processos + other.processos,
            testemunhas=self.testemunhas + other.testemunhas,
        )
