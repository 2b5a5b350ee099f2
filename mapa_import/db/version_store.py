from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import fields, replace
from datetime import UTC, datetime
from typing import Any

import psycopg2

from ..errors import PublishError, StaleStageError, TerminalPublishError, TransientPublishError
from ..models.records import ProcessoRecord, TestemunhaRecord
from ..models.version import Version, VersionStatus
from .batch_insert import BatchInsertError, BatchMetrics, batch_insert

"""Version storage backends for the staged publisher.

The store is the only shared mutable resource of an import: rows are scoped
by version_id, and the "active published version" pointer is changed only by
swap(), which runs as a single critical section (a lock in memory, an
advisory transaction lock in PostgreSQL).
"""

__all__ = [
    "PROCESSO_COLUMNS",
    "TESTEMUNHA_COLUMNS",
    "VersionStore",
    "InMemoryVersionStore",
    "PostgresVersionStore",
]

logger = logging.getLogger(__name__)

PROCESSO_COLUMNS = tuple(f.name for f in fields(ProcessoRecord) if f.name != "source")
TESTEMUNHA_COLUMNS = tuple(f.name for f in fields(TestemunhaRecord) if f.name != "source")


def _now() -> datetime:
    return datetime.now(UTC)


def _check_transition(version: Version, allowed: Iterable[VersionStatus], expected_count: int | None) -> None:
    allowed = frozenset(allowed)
    if version.status not in allowed:
        names = sorted(s.value for s in allowed)
        raise TerminalPublishError(
            f"version {version.number} is {version.status.value}; expected one of {names}"
        )
    if expected_count is not None and version.staged_count != expected_count:
        raise TerminalPublishError(
            f"version {version.number} staged {version.staged_count} rows; expected {expected_count}"
        )


def _check_rows(version: Version, actual: int) -> None:
    if actual != version.staged_count:
        raise TerminalPublishError(
            f"version {version.number} holds {actual} rows but staged {version.staged_count}"
        )


def _check_attempt(version: Version, token: str) -> None:
    """Only the latest begin_stage of a draft may write or complete it."""
    if version.status is not VersionStatus.DRAFT:
        raise StaleStageError(f"version {version.number} is {version.status.value}; stage attempt refused")
    if version.stage_token != token:
        raise StaleStageError(f"stage attempt on version {version.number} was superseded")


class VersionStore(ABC):
    """Storage contract used by VersionPublisher.

    Row payloads are plain dicts produced by ProcessoRecord.to_row /
    TestemunhaRecord.to_row.
    """

    @abstractmethod
    def create_version(self, file_name: str | None = None) -> Version:
        """Allocate the next version number as a new draft."""

    @abstractmethod
    def get(self, version_id: str) -> Version:
        """Return the version or raise TerminalPublishError if unknown."""

    @abstractmethod
    def begin_stage(self, version_id: str, checksum: str, file_name: str | None) -> Version:
        """Start a stage attempt on a draft.

        Clears partial rows, records the checksum and rotates stage_token.
        Raises StaleStageError when the version is no longer a draft.
        """

    @abstractmethod
    def write_chunk(
        self,
        version_id: str,
        token: str,
        processos: Sequence[dict[str, Any]],
        testemunhas: Sequence[dict[str, Any]],
    ) -> int:
        """Persist one chunk for the attempt holding `token`; returns rows written."""

    @abstractmethod
    def row_count(self, version_id: str) -> int: ...

    @abstractmethod
    def complete_stage(self, version_id: str, token: str, count: int) -> Version:
        """Mark the draft staged once it holds exactly `count` rows."""

    @abstractmethod
    def mark_failed(self, version_id: str, reason: str) -> Version: ...

    @abstractmethod
    def swap(
        self,
        version_id: str,
        allowed: Iterable[VersionStatus],
        expected_count: int | None = None,
    ) -> Version:
        """Archive the published version and publish `version_id`, atomically."""

    @abstractmethod
    def published(self) -> Version | None: ...

    @abstractmethod
    def list_versions(self) -> list[Version]: ...


class InMemoryVersionStore(VersionStore):
    """Thread-safe store used in mock mode and tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._versions: dict[str, Version] = {}
        self._processos: dict[str, list[dict[str, Any]]] = {}
        self._testemunhas: dict[str, list[dict[str, Any]]] = {}

    def create_version(self, file_name: str | None = None) -> Version:
        with self._lock:
            number = max((v.number for v in self._versions.values()), default=0) + 1
            version = Version(
                version_id=uuid.uuid4().hex,
                number=number,
                file_name=file_name,
                created_at=_now(),
            )
            self._versions[version.version_id] = version
            self._processos[version.version_id] = []
            self._testemunhas[version.version_id] = []
            return version

    def get(self, version_id: str) -> Version:
        with self._lock:
            try:
                return self._versions[version_id]
            except KeyError:
                raise TerminalPublishError(f"unknown version: {version_id}") from None

    def _put(self, version: Version) -> Version:
        self._versions[version.version_id] = version
        return version

    def begin_stage(self, version_id: str, checksum: str, file_name: str | None) -> Version:
        with self._lock:
            version = self.get(version_id)
            if version.status is not VersionStatus.DRAFT:
                raise StaleStageError(f"version {version.number} is {version.status.value}; cannot stage")
            self._processos[version_id] = []
            self._testemunhas[version_id] = []
            return self._put(
                replace(
                    version,
                    checksum=checksum,
                    file_name=file_name or version.file_name,
                    staged_count=0,
                    stage_token=uuid.uuid4().hex,
                )
            )

    def write_chunk(self, version_id, token, processos, testemunhas) -> int:
        with self._lock:
            _check_attempt(self.get(version_id), token)
            self._processos[version_id].extend(dict(r) for r in processos)
            self._testemunhas[version_id].extend(dict(r) for r in testemunhas)
            return len(processos) + len(testemunhas)

    def row_count(self, version_id: str) -> int:
        with self._lock:
            return len(self._processos.get(version_id, ())) + len(self._testemunhas.get(version_id, ()))

    def rows(self, version_id: str) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        with self._lock:
            return list(self._processos[version_id]), list(self._testemunhas[version_id])

    def complete_stage(self, version_id: str, token: str, count: int) -> Version:
        with self._lock:
            version = self.get(version_id)
            _check_attempt(version, token)
            actual = self.row_count(version_id)
            if actual != count:
                raise TransientPublishError(f"staged {actual} rows, expected {count}")
            return self._put(replace(version, status=VersionStatus.STAGED, staged_count=count))

    def mark_failed(self, version_id: str, reason: str) -> Version:
        with self._lock:
            version = self.get(version_id)
            return self._put(replace(version, status=VersionStatus.FAILED, failure_reason=reason))

    def swap(self, version_id, allowed, expected_count=None) -> Version:
        with self._lock:
            target = self.get(version_id)
            _check_transition(target, allowed, expected_count)
            _check_rows(target, self.row_count(version_id))
            for v in list(self._versions.values()):
                if v.status is VersionStatus.PUBLISHED and v.version_id != version_id:
                    self._put(replace(v, status=VersionStatus.ARCHIVED))
            return self._put(replace(target, status=VersionStatus.PUBLISHED, published_at=_now()))

    def published(self) -> Version | None:
        with self._lock:
            active = [v for v in self._versions.values() if v.status is VersionStatus.PUBLISHED]
            return active[0] if active else None

    def list_versions(self) -> list[Version]:
        with self._lock:
            return sorted(self._versions.values(), key=lambda v: v.number)


# Advisory lock key shared by every writer of import_versions
SWAP_LOCK_KEY = 7_310_442

SCHEMA_DDL = (
    """
    CREATE TABLE IF NOT EXISTS import_versions (
        version_id text PRIMARY KEY,
        number integer NOT NULL UNIQUE,
        status text NOT NULL,
        file_name text,
        checksum text,
        staged_count integer NOT NULL DEFAULT 0,
        created_at timestamptz NOT NULL,
        published_at timestamptz,
        failure_reason text,
        stage_token text
    )
    """,
    "ALTER TABLE import_versions ADD COLUMN IF NOT EXISTS stage_token text",
    """
    CREATE TABLE IF NOT EXISTS processos (
        version_id text NOT NULL REFERENCES import_versions(version_id),
        cnj text, cnj_digits text, reclamante_nome text, reu_nome text,
        uf text, comarca text, tribunal text, vara text, fase text, status text,
        data_audiencia text,
        advogados_ativo text[], advogados_passivo text[],
        testemunhas_ativo text[], testemunhas_passivo text[], todas_testemunhas text[],
        observacoes text, autofilled text[]
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS testemunhas (
        version_id text NOT NULL REFERENCES import_versions(version_id),
        nome_testemunha text, cnjs_como_testemunha text[], cnj text,
        reclamante_nome text, reu_nome text, autofilled text[]
    )
    """,
)

_VERSION_COLUMNS = (
    "version_id, number, status, file_name, checksum, staged_count, created_at, published_at,"
    " failure_reason, stage_token"
)


def _row_to_version(row: Sequence[Any]) -> Version:
    return Version(
        version_id=row[0],
        number=row[1],
        status=VersionStatus(row[2]),
        file_name=row[3],
        checksum=row[4],
        staged_count=row[5],
        created_at=row[6],
        published_at=row[7],
        failure_reason=row[8],
        stage_token=row[9],
    )


def _log_batch(metrics: BatchMetrics) -> None:
    logger.debug("inserted %d rows in %.3fs", metrics.batch_size, metrics.elapsed_seconds)


def _translate(e: Exception) -> Exception:
    """Map driver errors onto the publisher's transient/terminal split."""
    cause = e.__cause__ if isinstance(e, BatchInsertError) else e
    if isinstance(cause, psycopg2.OperationalError):
        return TransientPublishError(str(cause))
    return TerminalPublishError(str(cause))


class PostgresVersionStore(VersionStore):
    """psycopg2-backed store.

    Each method is its own transaction; staging commits once per chunk so a
    retried stage can clear and rewrite a partially written draft.
    """

    def __init__(self, connection: Any, page_size: int = 1000) -> None:
        self._conn = connection
        self._page_size = page_size

    def ensure_schema(self) -> None:
        def work(cur):
            for ddl in SCHEMA_DDL:
                cur.execute(ddl)

        self._run(work)

    def _run(self, work):
        try:
            with self._conn.cursor() as cur:
                result = work(cur)
            self._conn.commit()
            return result
        except (psycopg2.Error, BatchInsertError) as e:
            self._conn.rollback()
            logger.debug("store transaction rolled back: %s", e)
            raise _translate(e) from e
        except PublishError:
            self._conn.rollback()
            raise

    def _fetch(self, cur: Any, version_id: str, lock: bool = False) -> Version:
        sql = f"SELECT {_VERSION_COLUMNS} FROM import_versions WHERE version_id = %s"
        cur.execute(sql + " FOR UPDATE" if lock else sql, (version_id,))
        row = cur.fetchone()
        if row is None:
            raise TerminalPublishError(f"unknown version: {version_id}")
        return _row_to_version(row)

    def _count(self, cur: Any, version_id: str) -> int:
        cur.execute(
            "SELECT (SELECT COUNT(*) FROM processos WHERE version_id = %s)"
            " + (SELECT COUNT(*) FROM testemunhas WHERE version_id = %s)",
            (version_id, version_id),
        )
        return int(cur.fetchone()[0])

    def create_version(self, file_name: str | None = None) -> Version:
        def work(cur):
            cur.execute("SELECT pg_advisory_xact_lock(%s)", (SWAP_LOCK_KEY,))
            cur.execute("SELECT COALESCE(MAX(number), 0) + 1 FROM import_versions")
            number = cur.fetchone()[0]
            version = Version(
                version_id=uuid.uuid4().hex,
                number=number,
                file_name=file_name,
                created_at=_now(),
            )
            cur.execute(
                "INSERT INTO import_versions (version_id, number, status, file_name, created_at)"
                " VALUES (%s, %s, %s, %s, %s)",
                (version.version_id, version.number, version.status.value, file_name, version.created_at),
            )
            return version

        return self._run(work)

    def get(self, version_id: str) -> Version:
        return self._run(lambda cur: self._fetch(cur, version_id))

    def begin_stage(self, version_id: str, checksum: str, file_name: str | None) -> Version:
        def work(cur):
            version = self._fetch(cur, version_id, lock=True)
            if version.status is not VersionStatus.DRAFT:
                raise StaleStageError(f"version {version.number} is {version.status.value}; cannot stage")
            cur.execute("DELETE FROM processos WHERE version_id = %s", (version_id,))
            cur.execute("DELETE FROM testemunhas WHERE version_id = %s", (version_id,))
            cur.execute(
                "UPDATE import_versions SET checksum = %s, file_name = COALESCE(%s, file_name),"
                " staged_count = 0, stage_token = %s WHERE version_id = %s",
                (checksum, file_name, uuid.uuid4().hex, version_id),
            )
            return self._fetch(cur, version_id)

        return self._run(work)

    def write_chunk(self, version_id, token, processos, testemunhas) -> int:
        def work(cur):
            _check_attempt(self._fetch(cur, version_id, lock=True), token)
            written = batch_insert(
                cur,
                "processos",
                ("version_id",) + PROCESSO_COLUMNS,
                ([version_id] + [r[c] for c in PROCESSO_COLUMNS] for r in processos),
                page_size=self._page_size,
                metrics_callback=_log_batch,
            ).inserted_rows
            written += batch_insert(
                cur,
                "testemunhas",
                ("version_id",) + TESTEMUNHA_COLUMNS,
                ([version_id] + [r[c] for c in TESTEMUNHA_COLUMNS] for r in testemunhas),
                page_size=self._page_size,
                metrics_callback=_log_batch,
            ).inserted_rows
            return written

        return self._run(work)

    def row_count(self, version_id: str) -> int:
        return self._run(lambda cur: self._count(cur, version_id))

    def complete_stage(self, version_id: str, token: str, count: int) -> Version:
        def work(cur):
            _check_attempt(self._fetch(cur, version_id, lock=True), token)
            actual = self._count(cur, version_id)
            if actual != count:
                raise TransientPublishError(f"staged {actual} rows, expected {count}")
            cur.execute(
                "UPDATE import_versions SET status = %s, staged_count = %s WHERE version_id = %s",
                (VersionStatus.STAGED.value, count, version_id),
            )
            return self._fetch(cur, version_id)

        return self._run(work)

    def mark_failed(self, version_id: str, reason: str) -> Version:
        def work(cur):
            cur.execute(
                "UPDATE import_versions SET status = %s, failure_reason = %s WHERE version_id = %s",
                (VersionStatus.FAILED.value, reason, version_id),
            )
            return self._fetch(cur, version_id)

        return self._run(work)

    def swap(self, version_id, allowed, expected_count=None) -> Version:
        def work(cur):
            cur.execute("SELECT pg_advisory_xact_lock(%s)", (SWAP_LOCK_KEY,))
            target = self._fetch(cur, version_id, lock=True)
            _check_transition(target, allowed, expected_count)
            _check_rows(target, self._count(cur, version_id))
            cur.execute(
                "UPDATE import_versions SET status = %s WHERE status = %s AND version_id <> %s",
                (VersionStatus.ARCHIVED.value, VersionStatus.PUBLISHED.value, version_id),
            )
            cur.execute(
                "UPDATE import_versions SET status = %s, published_at = %s WHERE version_id = %s",
                (VersionStatus.PUBLISHED.value, _now(), version_id),
            )
            return self._fetch(cur, version_id)

        return self._run(work)

    def published(self) -> Version | None:
        def work(cur):
            cur.execute(
                f"SELECT {_VERSION_COLUMNS} FROM import_versions WHERE status = %s",
                (VersionStatus.PUBLISHED.value,),
            )
            row = cur.fetchone()
            return _row_to_version(row) if row is not None else None

        return self._run(work)

    def list_versions(self) -> list[Version]:
        def work(cur):
            cur.execute(f"SELECT {_VERSION_COLUMNS} FROM import_versions ORDER BY number")
            return [_row_to_version(r) for r in cur.fetchall()]

        return self._run(work)
