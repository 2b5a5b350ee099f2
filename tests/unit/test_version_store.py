from __future__ import annotations

from unittest.mock import patch

import psycopg2
import pytest

import mapa_import.db.version_store as vs
from mapa_import.db.batch_insert import BatchInsertError, BatchMetrics, InsertResult
from mapa_import.errors import StaleStageError, TerminalPublishError, TransientPublishError
from mapa_import.models.version import VersionStatus


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self.conn = conn
        self._result: list[tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql: str, params=()) -> None:
        self.conn.statements.append((sql, params))
        if self.conn.fail_with is not None:
            raise self.conn.fail_with
        self._result = list(self.conn.results.pop(0)) if self.conn.results else []

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return self._result


class FakeConnection:
    def __init__(self, results=None, fail_with: Exception | None = None) -> None:
        self.statements: list[tuple[str, tuple]] = []
        self.results = list(results or [])
        self.fail_with = fail_with
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def _version_row(status: str = "staged", count: int = 5, token: str | None = "tok"):
    return ("v1", 1, status, "mapa.xlsx", "sum", count, None, None, None, token)


def test_columns_follow_record_fields():
    assert vs.PROCESSO_COLUMNS[:4] == ("cnj", "cnj_digits", "reclamante_nome", "reu_nome")
    assert "source" not in vs.PROCESSO_COLUMNS
    assert vs.TESTEMUNHA_COLUMNS[0] == "nome_testemunha"
    assert "autofilled" in vs.TESTEMUNHA_COLUMNS


def test_translate_classifies_driver_errors():
    assert isinstance(vs._translate(psycopg2.OperationalError("reset")), TransientPublishError)
    assert isinstance(vs._translate(psycopg2.DataError("bad value")), TerminalPublishError)
    wrapped = BatchInsertError("x")
    wrapped.__cause__ = psycopg2.OperationalError("timeout")
    assert isinstance(vs._translate(wrapped), TransientPublishError)


def test_swap_locks_archives_and_publishes():
    conn = FakeConnection(results=[[], [_version_row()], [(5,)], [], [], [_version_row("published")]])
    store = vs.PostgresVersionStore(conn)
    version = store.swap("v1", {VersionStatus.STAGED}, expected_count=5)
    assert version.status is VersionStatus.PUBLISHED
    sqls = [s for s, _ in conn.statements]
    assert "pg_advisory_xact_lock" in sqls[0]
    assert sqls[1].endswith("FOR UPDATE")
    assert "COUNT(*)" in sqls[2]
    assert sqls[3].startswith("UPDATE import_versions SET status") and "<>" in sqls[2]
    assert conn.commits == 1


def test_swap_count_mismatch_rolls_back():
    conn = FakeConnection(results=[[], [_version_row(count=5)]])
    store = vs.PostgresVersionStore(conn)
    with pytest.raises(TerminalPublishError, match="expected 4"):
        store.swap("v1", {VersionStatus.STAGED}, expected_count=4)
    assert conn.rollbacks == 1
    assert conn.commits == 0
    assert len(conn.statements) == 2  # nothing was updated


def test_operational_error_becomes_transient():
    conn = FakeConnection(fail_with=psycopg2.OperationalError("server closed the connection"))
    store = vs.PostgresVersionStore(conn)
    with pytest.raises(TransientPublishError):
        store.get("v1")
    assert conn.rollbacks == 1


def test_unknown_version():
    store = vs.PostgresVersionStore(FakeConnection(results=[[]]))
    with pytest.raises(TerminalPublishError, match="unknown version"):
        store.get("nope")


def test_swap_refuses_when_stored_rows_differ_from_staged_count():
    conn = FakeConnection(results=[[], [_version_row(count=5)], [(6,)]])
    store = vs.PostgresVersionStore(conn)
    with pytest.raises(TerminalPublishError, match="holds 6 rows but staged 5"):
        store.swap("v1", {VersionStatus.STAGED}, expected_count=5)
    assert conn.rollbacks == 1
    assert len(conn.statements) == 3


def _fake_batch_insert(calls):
    def fake(cursor, table, columns, rows, page_size=1000, metrics_callback=None):
        rows = list(rows)
        calls.append((table, tuple(columns), rows, metrics_callback))
        return InsertResult(inserted_rows=len(rows))

    return fake


def test_write_chunk_inserts_rows_scoped_to_version(monkeypatch):
    calls = []
    monkeypatch.setattr(vs, "batch_insert", _fake_batch_insert(calls))
    conn = FakeConnection(results=[[_version_row("draft", 0)]])
    store = vs.PostgresVersionStore(conn, page_size=10)
    row = {c: None for c in vs.TESTEMUNHA_COLUMNS} | {"nome_testemunha": "Maria"}
    written = store.write_chunk("v1", "tok", [], [row])
    assert written == 1
    assert conn.statements[0][0].endswith("FOR UPDATE")
    assert calls[1][0] == "testemunhas"
    assert calls[1][1][0] == "version_id"
    assert calls[1][2][0][0] == "v1"
    assert calls[1][3] is vs._log_batch
    assert conn.commits == 1


def test_batch_timings_are_logged_at_debug():
    with patch.object(vs.logger, "debug") as debug:
        vs._log_batch(BatchMetrics(batch_size=3, elapsed_seconds=0.25, start_time=1.0, end_time=1.25))
    debug.assert_called_once_with("inserted %d rows in %.3fs", 3, 0.25)


@pytest.mark.parametrize(
    "row, match",
    [
        (_version_row("draft", 0, token="newer"), "superseded"),
        (_version_row("staged", 5), "is staged"),
    ],
)
def test_write_chunk_refuses_stale_attempts(monkeypatch, row, match):
    calls = []
    monkeypatch.setattr(vs, "batch_insert", _fake_batch_insert(calls))
    conn = FakeConnection(results=[[row]])
    store = vs.PostgresVersionStore(conn)
    with pytest.raises(StaleStageError, match=match):
        store.write_chunk("v1", "tok", [], [{c: None for c in vs.TESTEMUNHA_COLUMNS}])
    assert calls == []
    assert conn.rollbacks == 1


def test_begin_stage_rotates_token_under_row_lock():
    conn = FakeConnection(results=[[_version_row("draft", 0, token="old")], [], [], [], [_version_row("draft", 0)]])
    store = vs.PostgresVersionStore(conn)
    version = store.begin_stage("v1", "sum", "mapa.xlsx")
    assert version.stage_token == "tok"
    sql, params = conn.statements[3]
    assert "stage_token = %s" in sql
    assert params[2] not in ("old", None)
    assert conn.statements[0][0].endswith("FOR UPDATE")


def test_complete_stage_counts_rows_before_marking_staged():
    conn = FakeConnection(results=[[_version_row("draft", 0)], [(3,)]])
    store = vs.PostgresVersionStore(conn)
    with pytest.raises(TransientPublishError, match="staged 3 rows, expected 5"):
        store.complete_stage("v1", "tok", 5)
    assert conn.rollbacks == 1
    assert not any(s.startswith("UPDATE") for s, _ in conn.statements)
