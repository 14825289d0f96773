"""SQLModel ORM tables for documents, review state and history."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Text
from sqlmodel import Field, SQLModel


class DocumentRow(SQLModel, table=True):
    __tablename__ = "documents"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    file_path: str = Field(unique=True, index=True)
    title: str | None = None
    last_opened_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CommentRow(SQLModel, table=True):
    __tablename__ = "comments"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_comments_document_status", "document_id", "status"),)

    id: int | None = Field(default=None, primary_key=True)
    document_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    selected_text: str = Field(sa_column=Column(Text, nullable=False))
    instruction: str = Field(sa_column=Column(Text, nullable=False))
    line_hint: str | None = None
    status: str = Field(default="pending", index=True)
    request_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class ChangelogRow(SQLModel, table=True):
    __tablename__ = "changelogs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_changelogs_document_created", "document_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    document_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    request_id: str = Field(index=True)
    summary: str | None = Field(default=None, sa_column=Column(Text))
    comments_snapshot: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(default="pending", index=True)
    stream_log: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class SnapshotRow(SQLModel, table=True):
    __tablename__ = "snapshots"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_snapshots_document_id", "document_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id: int | None = Field(default=None, primary_key=True)
    document_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    content: str = Field(sa_column=Column(Text, nullable=False))
    source: str = Field(default="save")
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ChatSessionRow(SQLModel, table=True):
    __tablename__ = "chat_sessions"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    document_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ChatMessageRow(SQLModel, table=True):
    __tablename__ = "chat_messages"  # type: ignore[bad-override]
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="ck_chat_messages_role"),
        Index("idx_chat_messages_session_created", "session_id", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    session_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("chat_sessions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    role: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    context_selection: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
