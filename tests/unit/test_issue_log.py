from __future__ import annotations

import json
import re
from pathlib import Path

from mapa_import.logging.issue_log import IssueLogBuffer
from mapa_import.models.issue import Issue, Severity

EXPECTED_KEYS = {"sheet", "row", "column", "severity", "rule", "value", "autofilled"}


def _issue(row: int = 2, **kw) -> Issue:
    kw.setdefault("column", "CNJ")
    kw.setdefault("severity", Severity.ERROR)
    kw.setdefault("rule", "invalid CNJ check digits")
    kw.setdefault("value", "00012345620245010001")
    return Issue(sheet="Processos", row=row, **kw)


def test_flush_writes_json_lines(temp_workdir: Path):
    buf = IssueLogBuffer(temp_workdir / "logs")
    buf.append(_issue(2))
    buf.extend([_issue(3, severity=Severity.WARNING, column="Comarca", rule="comarca not informed", value=None)])
    assert len(buf) == 2

    path = buf.flush()
    assert path is not None
    assert re.fullmatch(r"issues-\d{8}-\d{6}\.log", path.name)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first, second = (json.loads(line) for line in lines)
    assert set(first) == EXPECTED_KEYS
    assert first["severity"] == "error"
    assert first["row"] == 2
    assert second["value"] is None
    assert second["autofilled"] is False
    assert len(buf) == 0


def test_flush_without_issues_creates_nothing(temp_workdir: Path):
    buf = IssueLogBuffer(temp_workdir / "logs")
    assert buf.flush() is None
    assert list((temp_workdir / "logs").iterdir()) == []


def test_second_flush_appends_to_same_file(temp_workdir: Path):
    buf = IssueLogBuffer(temp_workdir / "logs")
    buf.append(_issue(2))
    first = buf.flush()
    buf.append(_issue(3))
    assert buf.flush() == first
    assert len(first.read_text(encoding="utf-8").splitlines()) == 2


def test_default_directory_is_relative_logs(temp_workdir: Path):
    buf = IssueLogBuffer()
    buf.append(_issue())
    path = buf.flush()
    assert path.parent.resolve() == (temp_workdir / "logs").resolve()


def test_tuple_values_and_unicode_are_serialized(temp_workdir: Path):
    buf = IssueLogBuffer(temp_workdir / "logs")
    buf.append(_issue(column="CNJs_Como_Testemunha", value=("123", "São Paulo")))
    line = buf.flush().read_text(encoding="utf-8").strip()
    assert "São Paulo" in line
    assert json.loads(line)["value"] == ["123", "São Paulo"]
