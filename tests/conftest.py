# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections.abc import Callable
from pathlib import Path

import pandas as pd
import pytest

from mapa_import.logging.init import reset_logging


@pytest.fixture(autouse=True)
def _isolated_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """options:
  explode_lists: true
  standardize_cnj: true
  apply_default_reu: false
  intelligent_corrections: true
publisher:
  chunk_size: 2
  stage_timeout_seconds: 60
  max_attempts: 3
  backoff_min_seconds: 0
  backoff_max_seconds: 0
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
issue_log_directory: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def make_workbook(temp_workdir: Path) -> Callable[[str, dict[str, list[list[object]]]], Path]:
    """Write a real .xlsx whose first row in each sheet is the header row."""

    def _make(name: str, sheets: dict[str, list[list[object]]]) -> Path:
        path = temp_workdir / "data" / name
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for sheet_name, rows in sheets.items():
                pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
        return path

    return _make
