"""Persistence for documents, review comments and chat sessions."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlmodel import col, select

from docpilot.storage.common import to_db_datetime, to_utc_aware_datetime, utc_now
from docpilot.storage.database import Database, find_document, get_or_create_document
from docpilot.storage.sqlmodel_models import (
    ChatMessageRow,
    ChatSessionRow,
    CommentRow,
    DocumentRow,
)
from docpilot.workspace.models import (
    ChatMessageView,
    ChatRole,
    ChatSessionView,
    CommentCreate,
    CommentStatus,
    CommentView,
    DocumentView,
    HistoryMessage,
)


class WorkspaceRepository:
    """Document-scoped review state: comments and chat history."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def open_document(self, path: str | Path) -> DocumentView:
        """Create the document row on first reference and bump ``last_opened_at``."""

        now = to_db_datetime(utc_now())
        with self.database.session() as session:
            row = get_or_create_document(session, path)
            row.last_opened_at = now
            row.updated_at = now
            session.add(row)
            session.commit()
            return _to_document_view(row)

    def get_document(self, document_id: int) -> DocumentView | None:
        with self.database.session() as session:
            row = session.get(DocumentRow, document_id)
        return _to_document_view(row) if row is not None else None

    def list_recent_documents(self, limit: int = 20) -> list[DocumentView]:
        with self.database.session() as session:
            rows = session.exec(
                select(DocumentRow).order_by(col(DocumentRow.last_opened_at).desc()).limit(limit),
            ).all()
        return [_to_document_view(row) for row in rows]

    # -- comments ---------------------------------------------------------------

    def add_comment(self, document: str | Path, payload: CommentCreate) -> CommentView:
        if not payload.selected_text.strip():
            raise ValueError("Comment selected_text must be a non-empty string")
        if not payload.instruction.strip():
            raise ValueError("Comment instruction must be a non-empty string")

        with self.database.session() as session:
            doc = get_or_create_document(session, document)
            row = CommentRow(
                document_id=doc.id,
                selected_text=payload.selected_text,
                instruction=payload.instruction,
                line_hint=payload.line_hint or None,
                status=CommentStatus.PENDING.value,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            return _to_comment_view(row)

    def list_comments(
        self,
        document: str | Path,
        *,
        status: CommentStatus | None = None,
    ) -> list[CommentView]:
        """Comments of ``document`` in creation order, optionally filtered by status."""

        with self.database.session() as session:
            doc = find_document(session, document)
            if doc is None:
                return []
            statement = (
                select(CommentRow)
                .where(CommentRow.document_id == doc.id)
                .order_by(col(CommentRow.created_at).asc(), col(CommentRow.id).asc())
            )
            if status is not None:
                statement = statement.where(CommentRow.status == status.value)
            rows = session.exec(statement).all()
        return [_to_comment_view(row) for row in rows]

    def remove_comment(self, comment_id: int) -> bool:
        return self.delete_comments([comment_id]) == 1

    def delete_comments(self, comment_ids: Iterable[int]) -> int:
        ids = list(comment_ids)
        if not ids:
            return 0
        with self.database.session() as session:
            result = session.exec(sa_delete(CommentRow).where(col(CommentRow.id).in_(ids)))
            session.commit()
            return int(result.rowcount or 0)

    def assign_request(self, comment_ids: Iterable[int], request_id: str) -> int:
        """Tag pending comments with the edit request they are sent in."""

        ids = list(comment_ids)
        if not ids:
            return 0
        with self.database.session() as session:
            result = session.exec(
                sa_update(CommentRow)
                .where(
                    col(CommentRow.id).in_(ids),
                    col(CommentRow.status) == CommentStatus.PENDING.value,
                )
                .values(request_id=request_id),
            )
            session.commit()
            return int(result.rowcount or 0)

    def mark_applied(self, request_id: str) -> int:
        """pending -> applied for every comment sent with ``request_id``."""

        with self.database.session() as session:
            result = session.exec(
                sa_update(CommentRow)
                .where(
                    col(CommentRow.request_id) == request_id,
                    col(CommentRow.status) == CommentStatus.PENDING.value,
                )
                .values(
                    status=CommentStatus.APPLIED.value,
                    resolved_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def revert_applied(self, document: str | Path, *, request_id: str | None = None) -> int:
        """applied -> pending so the comments can be sent again."""

        with self.database.session() as session:
            doc = find_document(session, document)
            if doc is None:
                return 0
            statement = sa_update(CommentRow).where(
                col(CommentRow.document_id) == doc.id,
                col(CommentRow.status) == CommentStatus.APPLIED.value,
            )
            if request_id is not None:
                statement = statement.where(col(CommentRow.request_id) == request_id)
            result = session.exec(
                statement.values(status=CommentStatus.PENDING.value, resolved_at=None),
            )
            session.commit()
            return int(result.rowcount or 0)

    # -- chat -------------------------------------------------------------------

    def create_chat_session(self, document: str | Path) -> ChatSessionView:
        now = to_db_datetime(utc_now())
        with self.database.session() as session:
            doc = get_or_create_document(session, document)
            row = ChatSessionRow(document_id=doc.id, created_at=now, updated_at=now)
            session.add(row)
            session.commit()
            return _to_session_view(row)

    def list_chat_sessions(self, document: str | Path) -> list[ChatSessionView]:
        with self.database.session() as session:
            doc = find_document(session, document)
            if doc is None:
                return []
            rows = session.exec(
                select(ChatSessionRow)
                .where(ChatSessionRow.document_id == doc.id)
                .order_by(col(ChatSessionRow.updated_at).desc(), col(ChatSessionRow.id).desc()),
            ).all()
        return [_to_session_view(row) for row in rows]

    def add_chat_message(
        self,
        session_id: int,
        role: ChatRole,
        content: str,
        context_selection: str | None = None,
    ) -> ChatMessageView:
        now = to_db_datetime(utc_now())
        with self.database.session() as session:
            chat = session.get(ChatSessionRow, session_id)
            if chat is None:
                raise RuntimeError(f"Chat session not found: {session_id}")
            row = ChatMessageRow(
                session_id=session_id,
                role=ChatRole(role).value,
                content=content,
                context_selection=context_selection or None,
                created_at=now,
            )
            chat.updated_at = now
            session.add(row)
            session.add(chat)
            session.commit()
            return _to_message_view(row)

    def list_chat_messages(self, session_id: int) -> list[ChatMessageView]:
        with self.database.session() as session:
            rows = session.exec(
                select(ChatMessageRow)
                .where(ChatMessageRow.session_id == session_id)
                .order_by(col(ChatMessageRow.created_at).asc(), col(ChatMessageRow.id).asc()),
            ).all()
        return [_to_message_view(row) for row in rows]

    def chat_history(self, session_id: int) -> list[HistoryMessage]:
        return [
            HistoryMessage(role=message.role, content=message.content)
            for message in self.list_chat_messages(session_id)
        ]

    def delete_chat_session(self, session_id: int) -> bool:
        with self.database.session() as session:
            session.exec(
                sa_delete(ChatMessageRow).where(col(ChatMessageRow.session_id) == session_id),
            )
            result = session.exec(
                sa_delete(ChatSessionRow).where(col(ChatSessionRow.id) == session_id),
            )
            session.commit()
            return int(result.rowcount or 0) == 1


def _to_document_view(row: DocumentRow) -> DocumentView:
    return DocumentView(
        id=row.id or 0,
        file_path=row.file_path,
        title=row.title,
        last_opened_at=to_utc_aware_datetime(row.last_opened_at),
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_comment_view(row: CommentRow) -> CommentView:
    return CommentView(
        id=row.id or 0,
        document_id=row.document_id,
        selected_text=row.selected_text,
        instruction=row.instruction,
        line_hint=row.line_hint,
        status=CommentStatus(row.status),
        request_id=row.request_id,
        created_at=to_utc_aware_datetime(row.created_at),
        resolved_at=(
            to_utc_aware_datetime(row.resolved_at) if row.resolved_at is not None else None
        ),
    )


def _to_session_view(row: ChatSessionRow) -> ChatSessionView:
    return ChatSessionView(
        id=row.id or 0,
        document_id=row.document_id,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_message_view(row: ChatMessageRow) -> ChatMessageView:
    return ChatMessageView(
        id=row.id or 0,
        session_id=row.session_id,
        role=ChatRole(row.role),
        content=row.content,
        context_selection=row.context_selection,
        created_at=to_utc_aware_datetime(row.created_at),
    )
