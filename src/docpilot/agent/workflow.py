"""Host-side bookkeeping around edit and chat tasks."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from docpilot.agent.dispatcher import TaskDispatcher
from docpilot.agent.models import ActiveTask, TaskKind, TaskObserver, TaskOutcome, Tier
from docpilot.agent.prompts import format_comment_instructions
from docpilot.agent.routing import parse_tier
from docpilot.history.changelog import ChangelogRecorder
from docpilot.history.models import ChangelogStatus, SnapshotSource
from docpilot.history.review import ReviewWorkflow
from docpilot.storage.common import normalize_document_path
from docpilot.workspace.files import DocumentFiles
from docpilot.workspace.models import ChatRole, CommentStatus
from docpilot.workspace.repository import WorkspaceRepository

logger = logging.getLogger(__name__)

EDIT_SUCCESS_SUMMARY = "Changes applied, review changes below"
EDIT_SUPERSEDED_SUMMARY = "Superseded by a newer request"


@dataclass(slots=True)
class _EditInFlight:
    request_id: str
    document: Path
    before: str
    comment_ids: list[int]
    changelog_id: int | None


@dataclass(slots=True)
class _ChatInFlight:
    request_id: str
    session_id: int


class EditingSession:
    """One user's editing session on top of a :class:`TaskDispatcher`.

    Sending comments snapshots them into a changelog entry, tags them with the
    request id and captures the document as ``before``. On success the
    comments become ``applied``, the changelog is completed, the new content
    is snapshotted as ``agent-edit`` and a review is opened. On failure the
    changelog records the error and the comments stay pending.
    """

    def __init__(
        self,
        *,
        dispatcher: TaskDispatcher,
        repository: WorkspaceRepository,
        changelog: ChangelogRecorder,
        files: DocumentFiles,
        review: ReviewWorkflow,
        observer: TaskObserver | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.repository = repository
        self.changelog = changelog
        self.files = files
        self.review = review
        self.observer = observer or TaskObserver()
        self._lock = dispatcher.lock
        self._edit: _EditInFlight | None = None
        self._chat: _ChatInFlight | None = None

    def send_comments(
        self,
        document: str | Path,
        *,
        tier: Tier | str | None = None,
    ) -> ActiveTask | None:
        """Send every pending comment of ``document`` as one edit request.

        Returns ``None`` when there is nothing pending.
        """

        if tier is not None:
            tier = parse_tier(tier)
        path = Path(normalize_document_path(document))
        pending = self.repository.list_comments(path, status=CommentStatus.PENDING)
        if not pending:
            return None

        request_id = uuid.uuid4().hex
        comments_snapshot = json.dumps(
            [comment.to_snapshot() for comment in pending],
            ensure_ascii=False,
        )
        with self._lock:
            self._supersede_edit()
            before = self.files.read(path)
            if path.exists():
                self.files.snapshots.append(path, before, SnapshotSource.SAVE)
            changelog_id = self.changelog.create(path, request_id, comments_snapshot)
            comment_ids = [comment.id for comment in pending]
            self.repository.assign_request(comment_ids, request_id)
            self._edit = _EditInFlight(
                request_id=request_id,
                document=path,
                before=before,
                comment_ids=comment_ids,
                changelog_id=changelog_id,
            )
            return self.dispatcher.submit_edit(
                format_comment_instructions(pending),
                path,
                tier,
                observer=TaskObserver(
                    on_data=self.observer.on_data,
                    on_complete=self._edit_completed,
                    on_error=self._edit_failed,
                ),
                request_id=request_id,
            )

    def send_chat(
        self,
        document: str | Path,
        message: str,
        *,
        session_id: int | None = None,
        context_selection: str | None = None,
        tier: Tier | str | None = None,
    ) -> tuple[int, ActiveTask]:
        """Store the user message and dispatch a chat task; returns the session id too."""

        if not message.strip():
            raise ValueError("Chat message must not be empty.")
        if tier is not None:
            tier = parse_tier(tier)
        path = Path(normalize_document_path(document))
        if session_id is None:
            session_id = self.repository.create_chat_session(path).id
        history = self.repository.chat_history(session_id)
        self.repository.add_chat_message(session_id, ChatRole.USER, message, context_selection)

        request_id = uuid.uuid4().hex
        with self._lock:
            self._supersede_edit()
            self._chat = _ChatInFlight(request_id=request_id, session_id=session_id)
            task = self.dispatcher.submit_chat(
                message,
                path,
                session_id,
                context_selection,
                history,
                tier,
                observer=TaskObserver(
                    on_data=self.observer.on_data,
                    on_complete=self._chat_completed,
                    on_error=self._chat_failed,
                ),
                request_id=request_id,
            )
        return session_id, task

    def cancel(self) -> bool:
        with self._lock:
            cancelled = self.dispatcher.cancel()
            if cancelled:
                self._supersede_edit()
                self._chat = None
            return cancelled

    def _supersede_edit(self) -> None:
        edit = self._edit
        self._edit = None
        if edit is None or edit.changelog_id is None:
            return
        self.changelog.patch(
            edit.changelog_id,
            ChangelogStatus.ERROR,
            stream_log=self.dispatcher.aggregator.current(TaskKind.EDIT) or None,
            summary=EDIT_SUPERSEDED_SUMMARY,
        )

    def _take_edit(self, request_id: str) -> _EditInFlight | None:
        with self._lock:
            edit = self._edit
            if edit is None or edit.request_id != request_id:
                return None
            self._edit = None
            return edit

    def _edit_completed(self, outcome: TaskOutcome) -> None:
        edit = self._take_edit(outcome.task_id)
        if edit is not None:
            self._record_edit_success(edit, outcome)
        self.observer.on_complete(outcome)

    def _record_edit_success(self, edit: _EditInFlight, outcome: TaskOutcome) -> None:
        try:
            applied = self.repository.mark_applied(edit.request_id)
        except SQLAlchemyError:
            logger.exception("Failed to mark comments of request %s applied", edit.request_id)
            applied = 0
        logger.info("Request %s applied %d comment(s)", edit.request_id, applied)
        if edit.changelog_id is not None:
            self.changelog.patch(
                edit.changelog_id,
                ChangelogStatus.COMPLETED,
                stream_log=outcome.result.output,
                summary=EDIT_SUCCESS_SUMMARY,
            )

        try:
            after = edit.document.read_text("utf-8")
        except (OSError, UnicodeDecodeError):
            logger.warning("Could not re-read %s after edit; no review opened", edit.document)
            return
        self.files.snapshots.append(edit.document, after, SnapshotSource.AGENT_EDIT)
        self.review.open(edit.document, edit.before, after, edit.request_id)

    def _edit_failed(self, kind: TaskKind, message: str) -> None:
        with self._lock:
            edit = self._edit
            self._edit = None
        if edit is not None and edit.changelog_id is not None:
            self.changelog.patch(
                edit.changelog_id,
                ChangelogStatus.ERROR,
                stream_log=self.dispatcher.aggregator.current(kind) or None,
                summary=message,
            )
        self.observer.on_error(kind, message)

    def _chat_completed(self, outcome: TaskOutcome) -> None:
        with self._lock:
            chat = self._chat
            if chat is not None and chat.request_id == outcome.task_id:
                self._chat = None
            else:
                chat = None
        reply = outcome.result.output.strip()
        if chat is not None and reply:
            try:
                self.repository.add_chat_message(chat.session_id, ChatRole.ASSISTANT, reply)
            except (SQLAlchemyError, RuntimeError):
                logger.exception("Failed to store assistant reply in session %s", chat.session_id)
        self.observer.on_complete(outcome)

    def _chat_failed(self, kind: TaskKind, message: str) -> None:
        with self._lock:
            self._chat = None
        self.observer.on_error(kind, message)
