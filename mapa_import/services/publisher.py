from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

import psycopg2
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..db.version_store import VersionStore
from ..errors import (
    RetriesExhaustedError,
    StageCancelledError,
    StaleStageError,
    StageTimeoutError,
    TerminalPublishError,
    TransientPublishError,
)
from ..models.config_models import PublisherConfig
from ..models.records import NormalizedBatch, ProcessoRecord, TestemunhaRecord
from ..models.version import PublishResult, StageResult, Version, VersionStatus
from .progress import ProgressTracker

"""Staged version publisher: create_version -> stage -> publish.

stage() is idempotent on the session checksum. A repeat of the checksum that
already staged a version returns the stored count; a draft left half written
by an interrupted attempt is cleared and rewritten. Transient failures are
retried with capped exponential backoff and surface as RetriesExhaustedError
once the attempts run out; the version is then still a draft.
"""

__all__ = [
    "TRANSIENT_ERRORS",
    "RetryPolicy",
    "VersionPublisher",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (TransientPublishError, psycopg2.OperationalError)


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff for publisher calls."""
    max_attempts: int = 3
    wait_min: float = 0.5
    wait_max: float = 8.0
    multiplier: float = 0.5
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    @classmethod
    def from_config(cls, config: PublisherConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            wait_min=config.backoff_min_seconds,
            wait_max=config.backoff_max_seconds,
        )

    def retrying(self) -> Retrying:
        return Retrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.multiplier, min=self.wait_min, max=self.wait_max),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
        )


def _chunks(rows: Sequence[dict[str, Any]], size: int) -> Iterator[Sequence[dict[str, Any]]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def _payload(batch: NormalizedBatch) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Plain rows for storage; anything that is not a record is a malformed payload."""
    for p in batch.processos:
        if not isinstance(p, ProcessoRecord):
            raise TerminalPublishError(f"malformed payload: expected ProcessoRecord, got {type(p).__name__}")
    for t in batch.testemunhas:
        if not isinstance(t, TestemunhaRecord):
            raise TerminalPublishError(f"malformed payload: expected TestemunhaRecord, got {type(t).__name__}")
    return [p.to_row() for p in batch.processos], [t.to_row() for t in batch.testemunhas]


class VersionPublisher:
    """Drives the version state machine over a VersionStore.

    Args:
        store: Storage backend
        config: Chunk size, stage timeout and retry settings
        retry: Overrides the policy derived from config
    """

    def __init__(
        self,
        store: VersionStore,
        config: PublisherConfig | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.config = config or PublisherConfig()
        self.retry = retry or RetryPolicy.from_config(self.config)

    def _call(self, operation: str, policy: RetryPolicy, fn: Callable[[], T]) -> T:
        attempts = 0

        def attempt() -> T:
            nonlocal attempts
            attempts += 1
            return fn()

        try:
            return policy.retrying()(attempt)
        except TRANSIENT_ERRORS as e:
            logger.error("%s gave up after %d attempts: %s", operation, attempts, e)
            raise RetriesExhaustedError(operation, attempts, e) from e

    def create_version(self, file_name: str | None = None) -> Version:
        """Allocate a new draft. Each call makes a new draft."""
        version = self._call("create_version", self.retry, lambda: self.store.create_version(file_name))
        logger.info(f"created draft version {version.number}")
        return version

    def stage(
        self,
        version_id: str,
        batch: NormalizedBatch,
        checksum: str,
        file_name: str | None = None,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        retry: RetryPolicy | None = None,
    ) -> StageResult:
        """Write the batch under `version_id` and mark it staged.

        Raises:
            RetriesExhaustedError: transient failures outlasted the retry policy
            StageCancelledError: cancel_event was set; the draft is reconciled
                by the next stage call with the same checksum
            StaleStageError: a concurrent attempt took over the draft and did
                not stage this checksum
            TerminalPublishError: malformed payload or invalid state; the
                version is marked failed when it was draft or staged
        """
        policy = retry or self.retry
        timeout = self.config.stage_timeout_seconds if timeout is None else timeout
        try:
            processos, testemunhas = _payload(batch)
            with ProgressTracker(len(processos) + len(testemunhas)) as progress:
                return self._call(
                    "stage",
                    policy,
                    lambda: self._stage_once(
                        version_id, processos, testemunhas, checksum, file_name, timeout, cancel_event, progress
                    ),
                )
        except (RetriesExhaustedError, StageCancelledError):
            raise
        except StaleStageError:
            return self._superseded(version_id, checksum)
        except TerminalPublishError as e:
            self._fail(version_id, str(e))
            raise

    def _superseded(self, version_id: str, checksum: str) -> StageResult:
        """A concurrent attempt took over the draft; reuse its result when it staged this file."""
        version = self.store.get(version_id)
        if version.status is VersionStatus.STAGED and version.checksum == checksum:
            logger.info(f"version {version.number} was staged by a concurrent attempt ({version.staged_count} rows)")
            return StageResult(version_id=version_id, staged=version.staged_count, reused=True)
        raise StaleStageError(f"stage attempt on version {version.number} was superseded ({version.status.value})")

    def _fail(self, version_id: str, reason: str) -> None:
        try:
            version = self.store.get(version_id)
        except TerminalPublishError:
            return
        if version.status in (VersionStatus.DRAFT, VersionStatus.STAGED):
            self.store.mark_failed(version_id, reason)
            logger.error(f"version {version.number} failed: {reason}")

    def _stage_once(
        self,
        version_id: str,
        processos: list[dict[str, Any]],
        testemunhas: list[dict[str, Any]],
        checksum: str,
        file_name: str | None,
        timeout: float,
        cancel_event: threading.Event | None,
        progress: ProgressTracker,
    ) -> StageResult:
        version = self.store.get(version_id)
        if version.status is VersionStatus.STAGED:
            if version.checksum == checksum:
                logger.info(f"version {version.number} already staged for this file ({version.staged_count} rows)")
                return StageResult(version_id=version_id, staged=version.staged_count, reused=True)
            raise TerminalPublishError(f"version {version.number} already staged from a different file")
        if version.status is not VersionStatus.DRAFT:
            raise TerminalPublishError(f"version {version.number} is {version.status.value}; cannot stage")

        deadline = time.monotonic() + timeout
        token = self.store.begin_stage(version_id, checksum, file_name).stage_token
        progress.reset()
        progress.set_postfix(version=version.number)
        size = self.config.chunk_size
        for table, rows in (("processos", processos), ("testemunhas", testemunhas)):
            for chunk in _chunks(rows, size):
                if cancel_event is not None and cancel_event.is_set():
                    raise StageCancelledError(f"stage of version {version.number} cancelled")
                if time.monotonic() > deadline:
                    raise StageTimeoutError(f"stage of version {version.number} exceeded {timeout}s")
                if table == "processos":
                    written = self.store.write_chunk(version_id, token, chunk, ())
                else:
                    written = self.store.write_chunk(version_id, token, (), chunk)
                progress.advance(written)

        count = len(processos) + len(testemunhas)
        staged = self.store.complete_stage(version_id, token, count)
        logger.info(f"staged version {staged.number}: {count} rows")
        return StageResult(version_id=version_id, staged=count)

    def publish(self, version_id: str, expected_count: int) -> PublishResult:
        """Make a staged version the active one.

        The staged row count must equal `expected_count` (the valid count of
        the ValidationResult that authorised the import); otherwise the call
        fails and the version stays staged.
        """
        version = self._call(
            "publish",
            self.retry,
            lambda: self.store.swap(version_id, {VersionStatus.STAGED}, expected_count),
        )
        logger.info(f"published version {version.number} ({version.staged_count} rows)")
        return PublishResult(
            version_number=version.number,
            imported_count=version.staged_count,
            published_at=version.published_at,
        )

    def rollback(self, to_version_id: str) -> PublishResult:
        """Re-activate an archived version; the current one is archived."""
        version = self._call(
            "rollback",
            self.retry,
            lambda: self.store.swap(to_version_id, {VersionStatus.ARCHIVED}),
        )
        logger.info(f"rolled back to version {version.number}")
        return PublishResult(
            version_number=version.number,
            imported_count=version.staged_count,
            published_at=version.published_at,
        )
