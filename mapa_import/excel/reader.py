from __future__ import annotations

import io
import math
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from ..errors import UnreadableWorkbookError
from ..models.sheet import RawSheet

"""Workbook decoder: bytes (xlsx/xls/csv) -> {sheet name -> RawSheet}.

The first row of every sheet is the header row, the remaining rows are data.
Cells are returned with NaN turned into None; typed values (numbers, dates)
are kept for the normalizer to canonicalize.
"""

__all__ = [
    "EXCEL_SUFFIXES",
    "CSV_SUFFIXES",
    "cell_text",
    "detect_csv_separator",
    "read_workbook",
    "read_workbook_bytes",
]

EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}
CSV_SUFFIXES = {".csv", ".txt"}
CSV_SHEET_NAME = "CSV"
CSV_SAMPLE_CHARS = 1000


def detect_csv_separator(text: str) -> str:
    """Pick the most frequent of ',', ';' and TAB in the leading sample."""
    sample = text[:CSV_SAMPLE_CHARS]
    counts = {sep: sample.count(sep) for sep in (",", ";", "\t")}
    # max() keeps the first candidate on ties, so ',' wins an all-zero sample
    return max(counts, key=counts.get)  # type: ignore[arg-type]


def _clean_cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def _frame_to_sheet(name: str, df: pd.DataFrame) -> RawSheet | None:
    if df.shape[0] == 0:
        return None
    header_values = [_clean_cell(v) for v in df.iloc[0].tolist()]
    headers = ["" if v is None else str(v).strip() for v in header_values]
    # drop trailing unnamed columns left by formatting
    while headers and headers[-1] == "":
        headers.pop()
    if not headers:
        return None
    rows: list[list[Any]] = []
    for raw in df.iloc[1:].itertuples(index=False, name=None):
        cells = [_clean_cell(v) for v in raw[: len(headers)]]
        if all(c is None or (isinstance(c, str) and c.strip() == "") for c in cells):
            continue
        rows.append(cells)
    return RawSheet(name=name, headers=headers, rows=rows)


def _read_csv(content: bytes) -> dict[str, RawSheet]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    if not text.strip():
        return {}
    sep = detect_csv_separator(text)
    try:
        df = pd.read_csv(
            io.StringIO(text), sep=sep, header=None, dtype=str, keep_default_na=False
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise UnreadableWorkbookError(f"invalid csv: {e}") from e
    df = df.replace({"": None})
    sheet = _frame_to_sheet(CSV_SHEET_NAME, df)
    return {sheet.name: sheet} if sheet is not None else {}


def _read_excel(content: bytes) -> dict[str, RawSheet]:
    try:
        xls = pd.ExcelFile(io.BytesIO(content))
    except Exception as e:  # openpyxl/xlrd raise a variety of types
        raise UnreadableWorkbookError(f"invalid workbook: {e}") from e
    sheets: dict[str, RawSheet] = {}
    for name in xls.sheet_names:
        df = xls.parse(name, header=None, dtype=object)
        sheet = _frame_to_sheet(str(name), df)
        if sheet is not None:
            sheets[sheet.name] = sheet
    return sheets


def read_workbook_bytes(content: bytes, file_name: str) -> dict[str, RawSheet]:
    """Decode workbook bytes, choosing the format from the file suffix."""
    suffix = Path(file_name).suffix.lower()
    if suffix in CSV_SUFFIXES:
        return _read_csv(content)
    if suffix in EXCEL_SUFFIXES:
        return _read_excel(content)
    raise UnreadableWorkbookError(
        f"unsupported file format '{suffix or file_name}'. Use XLSX, XLS or CSV."
    )


def read_workbook(path: Path) -> tuple[bytes, dict[str, RawSheet]]:
    """Read a workbook from disk, returning its bytes and decoded sheets."""
    try:
        content = path.read_bytes()
    except OSError as e:
        raise UnreadableWorkbookError(f"cannot read {path}: {e}") from e
    return content, read_workbook_bytes(content, path.name)


def cell_text(value: Any) -> str:
    """Canonical text for a decoded cell (trimmed, '' for blanks).

    Integral floats lose their '.0' so numeric CNJs survive Excel typing.
    """
    value = _clean_cell(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()
