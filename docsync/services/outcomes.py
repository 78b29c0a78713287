"""Per-item results shared by the pull and push engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class OutcomeStatus(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    COMMITTED = "committed"
    SKIPPED = "skipped"


class SkipReason(StrEnum):
    """Why an item was left out of a sync operation."""

    NOT_FOUND = "not_found"
    CONTENT_MISSING = "content_missing"
    CONTENT_FETCH_FAILED = "content_fetch_failed"
    DECODE_FAILED = "decode_failed"
    STORAGE_FAILED = "storage_failed"
    BLOB_FAILED = "blob_failed"


@dataclass
class ItemOutcome:
    """Outcome of one file within a pull or push."""

    path: str | None
    status: OutcomeStatus
    file_id: str | None = None
    reason: SkipReason | None = None
    detail: str | None = None

    @property
    def skipped(self) -> bool:
        return self.status == OutcomeStatus.SKIPPED


@dataclass
class PullResult:
    """Result of a completed pull."""

    operation_id: str
    files: list[ItemOutcome] = field(default_factory=list)
    skipped: list[ItemOutcome] = field(default_factory=list)

    @property
    def files_processed(self) -> int:
        return len(self.files)


@dataclass
class PushResult:
    """Result of a completed push."""

    operation_id: str
    commit_hash: str
    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def files_committed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.COMMITTED)

    @property
    def skipped(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.skipped]
