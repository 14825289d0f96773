"""Controllers for docpilot CLI commands."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from docpilot.agent.models import TaskKind, TaskObserver, TaskOutcome
from docpilot.config import Settings
from docpilot.history.diff import render_diff_lines
from docpilot.history.review import PendingReview
from docpilot.runtime import open_session
from docpilot.workspace.models import CommentCreate, CommentStatus

Echo = Callable[[str], None]


@dataclass(slots=True)
class CommentAddCommand:
    """CLI input for a new review comment."""

    db_path: Path | None
    document: Path
    selected_text: str
    instruction: str
    line_hint: str | None = None


@dataclass(slots=True)
class CommentListCommand:
    db_path: Path | None
    document: Path
    status: str | None = None


@dataclass(slots=True)
class CommentRemoveCommand:
    db_path: Path | None
    comment_id: int


@dataclass(slots=True)
class EditCommand:
    """CLI input for sending pending comments as one edit task."""

    db_path: Path | None
    document: Path
    tier: str | None
    decision: str | None
    timeout_seconds: float
    diff_context: int | None = 3


@dataclass(slots=True)
class ReviewCommand:
    db_path: Path | None
    document: Path


@dataclass(slots=True)
class ChatCommand:
    db_path: Path | None
    document: Path
    message: str
    session_id: int | None
    context_selection: str | None
    tier: str | None
    timeout_seconds: float


@dataclass(slots=True)
class HistoryChangelogCommand:
    db_path: Path | None
    document: Path
    limit: int
    show_log: bool = False


@dataclass(slots=True)
class HistorySnapshotsCommand:
    db_path: Path | None
    document: Path
    limit: int | None


@dataclass(slots=True)
class HistorySnapshotCommand:
    """CLI input for commands addressing one snapshot."""

    db_path: Path | None
    snapshot_id: int
    diff_context: int | None = None


@dataclass(slots=True)
class HistoryClearCommand:
    db_path: Path | None
    document: Path
    changelog: bool
    snapshots: bool


@dataclass(slots=True)
class LastOutputCommand:
    db_path: Path | None
    kind: str


class _StreamPrinter:
    """Echo only the unseen suffix of cumulative stream text."""

    def __init__(self, echo: Echo) -> None:
        self.echo = echo
        self._printed = 0
        self._pending = ""

    def update(self, text: str) -> None:
        if len(text) <= self._printed:
            return
        chunk = self._pending + text[self._printed :]
        self._printed = len(text)
        *complete, self._pending = chunk.split("\n")
        for line in complete:
            self.echo(line)

    def finish(self) -> None:
        if self._pending:
            self.echo(self._pending)
            self._pending = ""


class _TaskWaiter:
    """Blocks the CLI thread until the dispatched task reports back."""

    def __init__(self, printer: _StreamPrinter) -> None:
        self.printer = printer
        self.outcome: TaskOutcome | None = None
        self.error: str | None = None
        self._done = threading.Event()

    def observer(self) -> TaskObserver:
        return TaskObserver(
            on_data=lambda _kind, text: self.printer.update(text),
            on_complete=self._completed,
            on_error=self._failed,
        )

    def wait(self, timeout_seconds: float) -> bool:
        finished = self._done.wait(timeout_seconds)
        self.printer.finish()
        return finished

    def _completed(self, outcome: TaskOutcome) -> None:
        self.outcome = outcome
        self._done.set()

    def _failed(self, _kind: TaskKind, message: str) -> None:
        self.error = message
        self._done.set()


class DocpilotCliController:
    """Coordinates comment, edit, chat and history CLI operations."""

    def add_comment(self, command: CommentAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_session(settings) as session:
            comment = session.repository.add_comment(
                command.document,
                CommentCreate(
                    selected_text=command.selected_text,
                    instruction=command.instruction,
                    line_hint=command.line_hint,
                ),
            )
        return [f"Comment added: id={comment.id} status={comment.status.value}"]

    def list_comments(self, command: CommentListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = CommentStatus(command.status) if command.status else None
        with open_session(settings) as session:
            comments = session.repository.list_comments(command.document, status=status)
        if not comments:
            return ["No comments."]
        return [
            f"#{comment.id} [{comment.status.value}] "
            f"{_shorten(comment.selected_text)!r} -> {comment.instruction}"
            for comment in comments
        ]

    def remove_comment(self, command: CommentRemoveCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_session(settings) as session:
            removed = session.repository.remove_comment(command.comment_id)
        if not removed:
            raise ValueError(f"Comment not found: {command.comment_id}")
        return [f"Comment removed: id={command.comment_id}"]

    def edit(
        self,
        command: EditCommand,
        *,
        echo: Echo,
        decide: Callable[[PendingReview], str] | None = None,
    ) -> list[str]:
        """Send pending comments, stream the output, then settle the review."""

        settings = Settings.from_env(db_path=command.db_path)
        waiter = _TaskWaiter(_StreamPrinter(echo))
        with open_session(settings, observer=waiter.observer()) as session:
            task = session.send_comments(command.document, tier=command.tier)
            if task is None:
                return ["No pending comments to send."]
            echo(f"Edit task dispatched: task_id={task.task_id} tier={task.tier.value}")
            if not waiter.wait(command.timeout_seconds):
                session.cancel()
                return [f"Timed out after {command.timeout_seconds:g}s; task cancelled."]
            if waiter.error is not None:
                return [f"Error: {waiter.error}"]

            review = session.review.pending
            if review is None:
                return ["Task completed; no review opened."]
            summary = review.summary
            if not summary.has_changes:
                session.review.reject()
                return ["Task completed; document unchanged, comments are pending again."]
            for line in render_diff_lines(review.diff, context=command.diff_context):
                echo(line)
            echo(f"Changes: +{summary.added} -{summary.removed}")

            decision = command.decision or (decide(review) if decide is not None else None)
            if decision == "approve":
                removed = session.review.approve()
                return [f"Approved; {removed} comment(s) resolved."]
            if decision == "reject":
                session.review.reject()
                return ["Rejected; document restored and comments are pending again."]
            return [
                "Review left undecided; the edit stays in place.",
                "Settle it later with `docpilot review approve` or `docpilot review reject`.",
            ]

    def approve_kept(self, command: ReviewCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_session(settings) as session:
            removed = session.review.approve_kept(command.document)
        return [f"Approved; {removed} comment(s) resolved."]

    def reject_kept(self, command: ReviewCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_session(settings) as session:
            snapshot = session.review.reject_kept(command.document)
        return [
            f"Rejected; restored snapshot #{snapshot.id} and comments are pending again.",
        ]

    def chat(self, command: ChatCommand, *, echo: Echo) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        waiter = _TaskWaiter(_StreamPrinter(echo))
        with open_session(settings, observer=waiter.observer()) as session:
            session_id, _task = session.send_chat(
                command.document,
                command.message,
                session_id=command.session_id,
                context_selection=command.context_selection,
                tier=command.tier,
            )
            if not waiter.wait(command.timeout_seconds):
                session.cancel()
                return [f"Timed out after {command.timeout_seconds:g}s; task cancelled."]
        if waiter.error is not None:
            return [f"Error: {waiter.error}"]
        return [f"Chat session: {session_id}"]

    def changelog(self, command: HistoryChangelogCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_session(settings) as session:
            entries = session.changelog.list_entries(command.document)[: command.limit]
        if not entries:
            return ["No changelog entries."]
        lines: list[str] = []
        for entry in entries:
            completed = entry.completed_at.isoformat() if entry.completed_at else "-"
            lines.append(
                f"#{entry.id} [{entry.status.value}] request={entry.request_id} "
                f"created={entry.created_at.isoformat()} completed={completed}",
            )
            if entry.summary:
                lines.append(f"  {entry.summary}")
            if command.show_log and entry.stream_log:
                lines.extend(f"  | {line}" for line in entry.stream_log.splitlines())
        return lines

    def snapshots(self, command: HistorySnapshotsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        limit = command.limit or settings.history.snapshot_list_limit
        with open_session(settings) as session:
            items = session.files.snapshots.list_snapshots(command.document, limit=limit)
        if not items:
            return ["No snapshots."]
        return [
            f"#{item.id} {item.source.value} {item.created_at.isoformat()}" for item in items
        ]

    def show_snapshot(self, command: HistorySnapshotCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_session(settings) as session:
            snapshot = session.files.snapshots.get(command.snapshot_id)
        if snapshot is None:
            raise ValueError(f"Snapshot not found: {command.snapshot_id}")
        return snapshot.content.split("\n")

    def diff_snapshot(self, command: HistorySnapshotCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_session(settings) as session:
            lines = session.review.compare_snapshot(command.snapshot_id)
        return render_diff_lines(lines, context=command.diff_context)

    def rollback(self, command: HistorySnapshotCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_session(settings) as session:
            snapshot = session.review.rollback(command.snapshot_id)
            document = session.repository.get_document(snapshot.document_id)
        target = document.file_path if document is not None else "document"
        return [f"Restored snapshot #{snapshot.id} to {target}"]

    def clear_history(self, command: HistoryClearCommand) -> list[str]:
        if not command.changelog and not command.snapshots:
            raise ValueError("Nothing to clear: choose changelog and/or snapshots.")
        settings = Settings.from_env(db_path=command.db_path)
        lines: list[str] = []
        with open_session(settings) as session:
            if command.changelog:
                removed = session.changelog.clear(command.document)
                lines.append(f"Changelog entries removed: {removed}")
            if command.snapshots:
                removed = session.files.snapshots.clear(command.document)
                lines.append(f"Snapshots removed: {removed}")
        return lines

    def last_output(self, command: LastOutputCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_session(settings) as session:
            text = session.dispatcher.last_output(TaskKind(command.kind))
        if not text:
            return ["No output recorded."]
        return text.split("\n")


def _shorten(text: str, limit: int = 40) -> str:
    flattened = " ".join(text.split())
    if len(flattened) <= limit:
        return flattened
    return flattened[: limit - 3] + "..."
