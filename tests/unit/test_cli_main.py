from __future__ import annotations

from pathlib import Path

import pytest

from mapa_import.cli.__main__ import _parse_overrides, _resolve_dsn, main as cli_main
from mapa_import.models.config_models import DatabaseConfig, ImportConfig
from mapa_import.models.sheet import SheetModel

VALID = "00012345020245010001"
BAD_CHECK = "00012345620245010001"
HEADERS = ["CNJ", "Reclamante_Limpo", "Reu_Nome", "Comarca", "Status"]


@pytest.fixture(autouse=True)
def _mock_mode(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    for var in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE"):
        monkeypatch.delenv(var, raising=False)


def _workbook(make_workbook, *cnjs: str) -> Path:
    rows = [HEADERS] + [[c, f"Reclamante {i}", "Banco X", "Rio", "Ativo"] for i, c in enumerate(cnjs)]
    return make_workbook("mapa.xlsx", {"Processos": rows})


def test_parse_overrides():
    assert _parse_overrides(["Mix=processo", "Plan 2=Testemunha"]) == {
        "Mix": SheetModel.PROCESSO,
        "Plan 2": SheetModel.TESTEMUNHA,
    }
    assert _parse_overrides([]) == {}


@pytest.mark.parametrize("value", ["Mix", "=processo", "Mix=foo", "Mix=ambiguous"])
def test_parse_overrides_rejects(value):
    with pytest.raises(ValueError):
        _parse_overrides([value])


def test_resolve_dsn_prefers_environment(monkeypatch):
    cfg = ImportConfig(database=DatabaseConfig(host="cfg-host", user="cfg-user", database="cfgdb"))
    assert _resolve_dsn(cfg) == "host=cfg-host port=5432 user=cfg-user dbname=cfgdb"
    monkeypatch.setenv("PGHOST", "env-host")
    monkeypatch.setenv("PGPASSWORD", "s3cret")
    assert _resolve_dsn(cfg) == "host=env-host port=5432 user=cfg-user dbname=cfgdb password=s3cret"
    monkeypatch.setenv("DATABASE_URL", "postgresql://u@h/db")
    assert _resolve_dsn(cfg) == "postgresql://u@h/db"


def test_cli_all_rows_valid(make_workbook, capsys):
    path = _workbook(make_workbook, VALID)
    code = cli_main([str(path)])
    out = capsys.readouterr().out
    assert code == 0
    assert "SUMMARY analyzed=1 valid=1 errors=0 warnings=0 infos=0 version=1 imported=1" in out


def test_cli_partial_failure(make_workbook, temp_workdir: Path, capsys):
    path = _workbook(make_workbook, VALID, BAD_CHECK)
    code = cli_main([str(path)])
    out = capsys.readouterr().out
    assert code == 2
    assert "SUMMARY analyzed=2 valid=1 errors=1 warnings=0 infos=0 version=1 imported=1" in out
    assert "INFO issues written to" in out
    assert len(list((temp_workdir / "logs").glob("issues-*.log"))) == 1


def test_cli_apply_corrections(make_workbook, capsys):
    path = _workbook(make_workbook, VALID, BAD_CHECK)
    code = cli_main([str(path), "--apply-corrections"])
    out = capsys.readouterr().out
    assert code == 0
    assert "valid=2 errors=0" in out
    assert "imported=2" in out


def test_cli_validate_only(make_workbook, capsys):
    path = _workbook(make_workbook, VALID, BAD_CHECK)
    code = cli_main([str(path), "--validate-only"])
    out = capsys.readouterr().out
    assert code == 2
    assert "version=- imported=0" in out


def test_cli_uses_config_file(make_workbook, write_config, capsys):
    path = _workbook(make_workbook, VALID, "00000010920235020002")
    code = cli_main([str(path), "--config", str(write_config)])
    assert code == 0
    assert "SUMMARY analyzed=2 valid=2 errors=0" in capsys.readouterr().out


def test_cli_config_missing(make_workbook, temp_workdir: Path, capsys):
    path = _workbook(make_workbook, VALID)
    code = cli_main([str(path), "--config", str(temp_workdir / "config" / "nope.yml")])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR config: config file not found" in out


def test_cli_invalid_model_override(make_workbook, capsys):
    path = _workbook(make_workbook, VALID)
    assert cli_main([str(path), "--model", "Processos=foo"]) == 1
    assert "ERROR model:" in capsys.readouterr().out


def test_cli_override_for_unknown_sheet(make_workbook, capsys):
    path = _workbook(make_workbook, VALID)
    assert cli_main([str(path), "--model", "Nope=processo"]) == 1
    assert "ERROR model: unknown sheets in override" in capsys.readouterr().out


def test_cli_min_confidence_range(make_workbook, capsys):
    path = _workbook(make_workbook, VALID)
    assert cli_main([str(path), "--min-confidence", "1.5"]) == 1
    assert "--min-confidence must be within [0, 1]" in capsys.readouterr().out


def test_cli_missing_file_is_fatal(temp_workdir: Path, capsys):
    code = cli_main([str(temp_workdir / "data" / "missing.xlsx")])
    assert code == 1
    assert "ERROR structure: cannot read" in capsys.readouterr().out


def test_cli_unsupported_format(temp_workdir: Path, capsys):
    path = temp_workdir / "data" / "mapa.pdf"
    path.write_bytes(b"%PDF-1.4")
    assert cli_main([str(path)]) == 1
    assert "unsupported file format" in capsys.readouterr().out


def test_cli_inspect_data(make_workbook, capsys):
    path = _workbook(make_workbook, VALID)
    code = cli_main([str(path), "--inspect-data"])
    out = capsys.readouterr().out
    assert code == 0
    assert "FILE: mapa.xlsx" in out
    assert "SHEET: Processos model=processo rows=1" in out
    assert VALID in out


def test_cli_debug_mode_logs_suggestions(make_workbook, capsys):
    path = _workbook(make_workbook, BAD_CHECK)
    code = cli_main([str(path), "--debug", "--validate-only"])
    out = capsys.readouterr().out
    assert code == 2
    assert "DEBUG debug mode enabled" in out
    assert "DEBUG suggestion" in out and f"'{VALID}'" in out


def test_cli_connection_failure_is_fatal(make_workbook, monkeypatch, capsys):
    import psycopg2

    import mapa_import.cli.__main__ as cli

    def refuse(cfg):
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.delenv("DISABLE_DB_CONNECT")
    monkeypatch.setattr(cli, "_connect", refuse)
    path = _workbook(make_workbook, VALID)
    code = cli_main([str(path)])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR database: connection failed: could not connect to server" in out
    assert "SUMMARY" not in out


def test_cli_validate_only_never_connects(make_workbook, monkeypatch, capsys):
    import mapa_import.cli.__main__ as cli

    def fail(cfg):
        raise AssertionError("validate-only must not connect")

    monkeypatch.delenv("DISABLE_DB_CONNECT")
    monkeypatch.setattr(cli, "_connect", fail)
    path = _workbook(make_workbook, VALID)
    assert cli_main([str(path), "--validate-only"]) == 0
    assert "version=- imported=0" in capsys.readouterr().out
