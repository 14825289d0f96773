"""Domain models for document history: snapshots and changelog entries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SnapshotSource(str, Enum):
    """Why a snapshot was taken."""

    SAVE = "save"
    AGENT_EDIT = "agent-edit"
    RESTORE = "restore"


class ChangelogStatus(str, Enum):
    """Lifecycle of one edit-task audit record."""

    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_CHANGELOG_STATUSES = frozenset({ChangelogStatus.COMPLETED, ChangelogStatus.ERROR})


@dataclass(frozen=True, slots=True)
class SnapshotAppendResult:
    """Outcome of ``SnapshotStore.append``: a new id, or skipped on identical content."""

    id: int | None = None
    skipped: bool = False


@dataclass(slots=True)
class SnapshotMeta:
    """Snapshot listing row; content is fetched lazily."""

    id: int
    source: SnapshotSource
    created_at: datetime


@dataclass(slots=True)
class SnapshotView:
    id: int
    document_id: int
    content: str
    source: SnapshotSource
    created_at: datetime


@dataclass(slots=True)
class ChangelogEntryView:
    """Readable changelog row for the history panel."""

    id: int
    document_id: int
    request_id: str
    status: ChangelogStatus
    comments_snapshot: str | None
    stream_log: str | None
    summary: str | None
    created_at: datetime
    completed_at: datetime | None
