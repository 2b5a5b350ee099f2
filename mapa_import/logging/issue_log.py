from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.issue import Issue

"""Issue log buffering.

- JSON Lines with the fixed Issue keys (no extra keys)
- one `issues-YYYYMMDD-HHMMSS.log` (UTC) per run, created on first flush
- serial use only; the pipeline owns the buffer for the duration of a run
"""

__all__ = [
    "IssueLogBuffer",
]

DEFAULT_LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class IssueLogBuffer:
    """In-memory buffer of Issues. flush() appends them as JSON Lines."""

    def __init__(self, directory: Path | str | None = None) -> None:
        self._directory = Path(directory) if directory is not None else DEFAULT_LOGS_DIR
        self._issues: list[Issue] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._directory.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._directory / f"issues-{stamp}.log"
        return self._file_path

    def append(self, issue: Issue) -> None:
        self._issues.append(issue)

    def extend(self, issues: Iterable[Issue]) -> None:
        self._issues.extend(issues)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._issues)

    def flush(self) -> Path | None:
        """Write buffered issues; returns the file path, or None if nothing was buffered."""
        if not self._issues:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for issue in self._issues:
                f.write(issue.to_json_line() + "\n")
        self._issues.clear()
        return fp
