"""Review of agent edits: approve, reject, and rollback to a snapshot."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from docpilot.history.diff import (
    DiffLine,
    DiffLineType,
    DiffSummary,
    compute_line_diff,
    summarize_diff,
)
from docpilot.history.models import SnapshotSource, SnapshotView
from docpilot.history.snapshots import SnapshotStore
from docpilot.workspace.files import DocumentFiles
from docpilot.workspace.models import CommentStatus
from docpilot.workspace.repository import WorkspaceRepository

logger = logging.getLogger(__name__)


class ReviewError(RuntimeError):
    """Review action requested in a state that does not allow it."""


@dataclass(slots=True)
class PendingReview:
    """Before/after pair of one successful edit awaiting a decision."""

    document: Path
    before: str
    after: str
    request_id: str
    diff: list[DiffLine] = field(default_factory=list)

    @property
    def summary(self) -> DiffSummary:
        return summarize_diff(self.diff)


class ReviewWorkflow:
    """All-or-nothing review of the latest agent edit.

    ``reload`` is called with the document path and its new content whenever
    the file is rewritten, so the host can refresh what it shows.
    """

    def __init__(
        self,
        repository: WorkspaceRepository,
        files: DocumentFiles,
        *,
        reload: Callable[[Path, str], None] | None = None,
    ) -> None:
        self.repository = repository
        self.files = files
        self.reload = reload
        self.pending: PendingReview | None = None

    @property
    def snapshots(self) -> SnapshotStore:
        return self.files.snapshots

    def open(self, document: Path, before: str, after: str, request_id: str) -> PendingReview:
        """Hold the pair for review; replaces an earlier undecided review."""

        if self.pending is not None:
            logger.info("Dropping undecided review of request %s", self.pending.request_id)
        self.pending = PendingReview(
            document=document,
            before=before,
            after=after,
            request_id=request_id,
            diff=compute_line_diff(before, after),
        )
        return self.pending

    def approve(self) -> int:
        """Keep the edit and delete every applied comment of the document.

        Comments applied by an earlier edit whose review was dropped are
        resolved along with the ones of this request.
        """

        review = self._require_pending()
        deleted = self._delete_applied(review.document)
        self.pending = None
        logger.info("Approved request %s, removed %d comment(s)", review.request_id, deleted)
        return deleted

    def reject(self) -> PendingReview:
        """Restore the pre-edit content and send every applied comment back to pending."""

        review = self._require_pending()
        self.files.write(review.document, review.before, source=SnapshotSource.RESTORE)
        self.pending = None
        reverted = self.repository.revert_applied(review.document)
        logger.info(
            "Rejected request %s, %d comment(s) back to pending",
            review.request_id,
            reverted,
        )
        self._reload(review.document, review.before)
        return review

    def approve_kept(self, document: Path) -> int:
        """Resolve the applied comments of an edit kept without a decision."""

        if self.pending is not None and self.pending.document == document:
            return self.approve()
        deleted = self._delete_applied(document)
        logger.info("Approved kept edit of %s, removed %d comment(s)", document, deleted)
        return deleted

    def reject_kept(self, document: Path) -> SnapshotView:
        """Undo the latest agent edit of ``document`` after its review was left open.

        The content goes back to the snapshot taken right before that edit and
        every applied comment of the document returns to pending.
        """

        edit = self.snapshots.latest(document, source=SnapshotSource.AGENT_EDIT)
        if edit is None:
            raise ReviewError(f"No agent edit recorded for {document}.")
        previous = self.snapshots.get_previous(edit.id)
        if previous is None:
            raise ReviewError(f"No content recorded before the last agent edit of {document}.")
        if self.pending is not None and self.pending.document == document:
            self.pending = None
        self.files.write(document, previous.content, source=SnapshotSource.RESTORE)
        reverted = self.repository.revert_applied(document)
        logger.info("Rejected kept edit of %s, %d comment(s) back to pending", document, reverted)
        self._reload(document, previous.content)
        return previous

    def rollback(self, snapshot_id: int) -> SnapshotView:
        """Rewrite the document with the content of ``snapshot_id``."""

        snapshot = self.snapshots.get(snapshot_id)
        if snapshot is None:
            raise ReviewError(f"Snapshot {snapshot_id} not found.")
        document = self.repository.get_document(snapshot.document_id)
        if document is None:
            raise ReviewError(f"Document of snapshot {snapshot_id} not found.")
        path = Path(document.file_path)
        if self.pending is not None and self.pending.document == path:
            self.pending = None
        self.files.write(path, snapshot.content, source=SnapshotSource.RESTORE)
        self._reload(path, snapshot.content)
        return snapshot

    def compare_snapshot(self, snapshot_id: int) -> list[DiffLine]:
        """Diff of ``snapshot_id`` against the snapshot before it."""

        snapshot = self.snapshots.get(snapshot_id)
        if snapshot is None:
            raise ReviewError(f"Snapshot {snapshot_id} not found.")
        previous = self.snapshots.get_previous(snapshot_id)
        if previous is None:
            return [DiffLine(DiffLineType.ADDED, line) for line in snapshot.content.split("\n")]
        return compute_line_diff(previous.content, snapshot.content)

    def _require_pending(self) -> PendingReview:
        if self.pending is None:
            raise ReviewError("No edit is awaiting review.")
        return self.pending

    def _delete_applied(self, document: Path) -> int:
        applied = self.repository.list_comments(document, status=CommentStatus.APPLIED)
        return self.repository.delete_comments(comment.id for comment in applied)

    def _reload(self, path: Path, content: str) -> None:
        if self.reload is not None:
            self.reload(path, content)
