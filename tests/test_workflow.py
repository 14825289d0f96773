from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import allure
import pytest
from conftest import FakeTransport

from docpilot.agent.dispatcher import TaskDispatcher
from docpilot.agent.models import TaskKind, TaskObserver, TaskOutcome, TaskResult
from docpilot.agent.routing import TierRouting
from docpilot.agent.workflow import (
    EDIT_SUCCESS_SUMMARY,
    EDIT_SUPERSEDED_SUMMARY,
    EditingSession,
)
from docpilot.config import AgentSettings
from docpilot.history.changelog import ChangelogRecorder
from docpilot.history.diff import DiffLine, DiffLineType
from docpilot.history.models import ChangelogStatus, SnapshotSource
from docpilot.history.review import ReviewError, ReviewWorkflow
from docpilot.history.snapshots import SnapshotStore
from docpilot.storage.database import Database
from docpilot.workspace.files import DocumentFiles
from docpilot.workspace.models import ChatRole, CommentCreate, CommentStatus
from docpilot.workspace.repository import WorkspaceRepository

pytestmark = [
    allure.epic("Diff Review"),
    allure.feature("Edit & Chat Workflow"),
]


@dataclass
class Harness:
    session: EditingSession
    transport: FakeTransport
    repository: WorkspaceRepository
    changelog: ChangelogRecorder
    snapshots: SnapshotStore
    review: ReviewWorkflow
    document: Path
    completed: list[TaskOutcome]
    errors: list[tuple[TaskKind, str]]
    reloads: list[tuple[Path, str]]

    def add_comment(self, selected: str, instruction: str) -> None:
        self.repository.add_comment(self.document, CommentCreate(selected, instruction))

    def statuses(self) -> list[CommentStatus]:
        return [comment.status for comment in self.repository.list_comments(self.document)]


@pytest.fixture()
def harness(database: Database, fake_transport: FakeTransport, tmp_path: Path) -> Harness:
    document = tmp_path / "plan.md"
    document.write_text("# T\nOld", "utf-8")
    completed: list[TaskOutcome] = []
    errors: list[tuple[TaskKind, str]] = []
    reloads: list[tuple[Path, str]] = []
    repository = WorkspaceRepository(database)
    snapshots = SnapshotStore(database)
    files = DocumentFiles(snapshots, backup_dir_name=None)
    changelog = ChangelogRecorder(database)
    review = ReviewWorkflow(
        repository,
        files,
        reload=lambda path, content: reloads.append((path, content)),
    )
    session = EditingSession(
        dispatcher=TaskDispatcher(fake_transport, TierRouting.from_settings(AgentSettings())),
        repository=repository,
        changelog=changelog,
        files=files,
        review=review,
        observer=TaskObserver(
            on_complete=completed.append,
            on_error=lambda kind, message: errors.append((kind, message)),
        ),
    )
    return Harness(
        session=session,
        transport=fake_transport,
        repository=repository,
        changelog=changelog,
        snapshots=snapshots,
        review=review,
        document=document,
        completed=completed,
        errors=errors,
        reloads=reloads,
    )


def _finish_edit(harness: Harness, new_content: str, output: str = "done") -> None:
    harness.document.write_text(new_content, "utf-8")
    harness.transport.last.listener.on_complete(TaskResult(output=output))


def test_successful_edit_opens_review_with_diff(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")

    task = harness.session.send_comments(harness.document)
    assert task is not None
    assert harness.statuses() == [CommentStatus.PENDING]
    (entry,) = harness.changelog.list_entries(harness.document)
    assert entry.status is ChangelogStatus.PENDING
    assert json.loads(entry.comments_snapshot or "[]")[0]["instruction"] == "Say new"

    _finish_edit(harness, "# T\nNew", output="Edited the file")

    pending = harness.review.pending
    assert pending is not None
    assert pending.request_id == task.task_id
    assert pending.diff == [
        DiffLine(DiffLineType.UNCHANGED, "# T"),
        DiffLine(DiffLineType.REMOVED, "Old"),
        DiffLine(DiffLineType.ADDED, "New"),
    ]
    assert harness.statuses() == [CommentStatus.APPLIED]
    (entry,) = harness.changelog.list_entries(harness.document)
    assert entry.status is ChangelogStatus.COMPLETED
    assert entry.summary == EDIT_SUCCESS_SUMMARY
    assert entry.stream_log == "Edited the file"
    sources = [item.source for item in harness.snapshots.list_snapshots(harness.document)]
    assert sources == [SnapshotSource.AGENT_EDIT, SnapshotSource.SAVE]
    assert [outcome.task_id for outcome in harness.completed] == [task.task_id]


def test_reject_restores_content_and_comments(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")
    harness.session.send_comments(harness.document)
    _finish_edit(harness, "# T\nNew")

    harness.review.reject()

    assert harness.document.read_text("utf-8") == "# T\nOld"
    assert harness.statuses() == [CommentStatus.PENDING]
    assert harness.review.pending is None
    assert harness.reloads == [(harness.document, "# T\nOld")]
    sources = [item.source for item in harness.snapshots.list_snapshots(harness.document)]
    assert sources == [SnapshotSource.RESTORE, SnapshotSource.AGENT_EDIT, SnapshotSource.SAVE]


def test_approve_deletes_applied_comments(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")
    harness.session.send_comments(harness.document)
    _finish_edit(harness, "# T\nNew")
    harness.add_comment("T", "Rename title")

    deleted = harness.review.approve()

    assert deleted == 1
    assert harness.statuses() == [CommentStatus.PENDING]
    assert harness.document.read_text("utf-8") == "# T\nNew"
    with pytest.raises(ReviewError):
        harness.review.approve()


def _two_edits_without_decision(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")
    harness.session.send_comments(harness.document)
    _finish_edit(harness, "# T\nNew")
    harness.add_comment("T", "Rename title")
    harness.session.send_comments(harness.document)
    _finish_edit(harness, "# Title\nNew")


def test_reject_reverts_comments_of_a_dropped_review(harness: Harness) -> None:
    _two_edits_without_decision(harness)
    assert harness.statuses() == [CommentStatus.APPLIED, CommentStatus.APPLIED]

    harness.review.reject()

    assert harness.statuses() == [CommentStatus.PENDING, CommentStatus.PENDING]
    assert harness.document.read_text("utf-8") == "# T\nNew"


def test_approve_resolves_comments_of_a_dropped_review(harness: Harness) -> None:
    _two_edits_without_decision(harness)

    assert harness.review.approve() == 2
    assert harness.statuses() == []


def test_kept_edit_is_settled_from_a_fresh_review(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")
    harness.session.send_comments(harness.document)
    _finish_edit(harness, "# T\nNew")
    later = ReviewWorkflow(harness.repository, harness.review.files)

    restored = later.reject_kept(harness.document)

    assert restored.content == "# T\nOld"
    assert harness.document.read_text("utf-8") == "# T\nOld"
    assert harness.statuses() == [CommentStatus.PENDING]

    harness.session.send_comments(harness.document)
    _finish_edit(harness, "# T\nNewer")
    assert later.approve_kept(harness.document) == 1
    assert harness.statuses() == []
    assert harness.document.read_text("utf-8") == "# T\nNewer"


def test_reject_kept_without_agent_edit_is_an_error(harness: Harness) -> None:
    with pytest.raises(ReviewError, match="No agent edit"):
        harness.review.reject_kept(harness.document)


def test_unreadable_document_after_edit_completes_without_review(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")
    task = harness.session.send_comments(harness.document)
    assert task is not None

    harness.document.unlink()
    harness.transport.last.listener.on_complete(TaskResult(output="done"))

    assert [outcome.task_id for outcome in harness.completed] == [task.task_id]
    (entry,) = harness.changelog.list_entries(harness.document)
    assert entry.status is ChangelogStatus.COMPLETED
    assert harness.review.pending is None
    assert harness.errors == []


def test_invalid_tier_is_rejected_before_any_bookkeeping(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")

    with pytest.raises(ValueError, match="Unsupported tier"):
        harness.session.send_comments(harness.document, tier="turbo")
    with pytest.raises(ValueError, match="Unsupported tier"):
        harness.session.send_chat(harness.document, "Hello", tier="turbo")

    assert harness.changelog.list_entries(harness.document) == []
    (comment,) = harness.repository.list_comments(harness.document)
    assert comment.status is CommentStatus.PENDING
    assert comment.request_id is None
    assert harness.repository.list_chat_sessions(harness.document) == []
    assert harness.transport.sent == []


def test_agent_error_keeps_comments_pending(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")
    harness.session.send_comments(harness.document)

    harness.transport.last.listener.on_error("rate limited")

    assert harness.statuses() == [CommentStatus.PENDING]
    assert harness.review.pending is None
    (entry,) = harness.changelog.list_entries(harness.document)
    assert entry.status is ChangelogStatus.ERROR
    assert entry.summary == "rate limited"
    assert harness.errors == [(TaskKind.EDIT, "rate limited")]


def test_nothing_pending_sends_nothing(harness: Harness) -> None:
    assert harness.session.send_comments(harness.document) is None
    assert harness.transport.sent == []


def test_newer_edit_supersedes_running_one(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")
    harness.session.send_comments(harness.document)
    first = harness.transport.last
    harness.add_comment("T", "Rename title")

    harness.session.send_comments(harness.document)

    assert first.handle.killed
    first.listener.on_complete(TaskResult(output="late"))
    newest, oldest = harness.changelog.list_entries(harness.document)
    assert oldest.status is ChangelogStatus.ERROR
    assert oldest.summary == EDIT_SUPERSEDED_SUMMARY
    assert newest.status is ChangelogStatus.PENDING
    assert harness.review.pending is None
    assert harness.completed == []


def test_cancel_marks_edit_superseded(harness: Harness) -> None:
    harness.add_comment("Old", "Say new")
    harness.session.send_comments(harness.document)

    assert harness.session.cancel() is True

    (entry,) = harness.changelog.list_entries(harness.document)
    assert entry.status is ChangelogStatus.ERROR
    assert harness.statuses() == [CommentStatus.PENDING]


def test_chat_stores_user_message_and_reply(harness: Harness) -> None:
    session_id, task = harness.session.send_chat(
        harness.document,
        "What is this about?",
        context_selection="Old",
    )
    request = harness.transport.last.request
    assert request.session_id == session_id
    assert request.history == []

    harness.transport.last.listener.on_complete(TaskResult(output="  It is a plan.\n"))
    harness.session.send_chat(harness.document, "Thanks", session_id=session_id)

    assert harness.transport.last.request.history[-1].content == "It is a plan."
    messages = harness.repository.list_chat_messages(session_id)
    assert [(message.role, message.content) for message in messages] == [
        (ChatRole.USER, "What is this about?"),
        (ChatRole.ASSISTANT, "It is a plan."),
        (ChatRole.USER, "Thanks"),
    ]
    assert messages[0].context_selection == "Old"
    assert harness.completed[0].task_id == task.task_id


def test_rollback_and_compare_snapshot(harness: Harness) -> None:
    files = harness.review.files
    first = files.write(harness.document, "# T\nv1")
    second = files.write(harness.document, "# T\nv2")
    assert first is not None and first.id is not None
    assert second is not None and second.id is not None

    restored = harness.review.rollback(first.id)

    assert restored.content == "# T\nv1"
    assert harness.document.read_text("utf-8") == "# T\nv1"
    assert harness.snapshots.list_snapshots(harness.document)[0].source is SnapshotSource.RESTORE
    assert harness.review.compare_snapshot(second.id) == [
        DiffLine(DiffLineType.UNCHANGED, "# T"),
        DiffLine(DiffLineType.REMOVED, "v1"),
        DiffLine(DiffLineType.ADDED, "v2"),
    ]
    assert harness.review.compare_snapshot(first.id) == [
        DiffLine(DiffLineType.ADDED, "# T"),
        DiffLine(DiffLineType.ADDED, "v1"),
    ]
    with pytest.raises(ReviewError, match="not found"):
        harness.review.rollback(9999)
