from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

"""Version lifecycle models for the staged publisher.

State transitions: draft → staged → published → archived, with failed
reachable from draft or staged. A published version is never modified except
to be archived when a newer one takes its place.
"""

__all__ = [
    "VersionStatus",
    "Version",
    "StageResult",
    "PublishResult",
]


class VersionStatus(Enum):
    DRAFT = "draft"
    STAGED = "staged"
    PUBLISHED = "published"
    FAILED = "failed"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class Version:
    version_id: str
    number: int
    status: VersionStatus = VersionStatus.DRAFT
    file_name: str | None = None
    checksum: str | None = None  # session checksum of the last stage attempt
    staged_count: int = 0
    created_at: datetime | None = None
    published_at: datetime | None = None
    failure_reason: str | None = None
    stage_token: str | None = None  # rotated by every begin_stage; stale attempts are refused


@dataclass(frozen=True)
class StageResult:
    version_id: str
    staged: int
    reused: bool = False  # True when a repeat of the same checksum short-circuited


@dataclass(frozen=True)
class PublishResult:
    """Shape the presentation layer is allowed to depend on."""
    version_number: int
    imported_count: int
    published_at: datetime
