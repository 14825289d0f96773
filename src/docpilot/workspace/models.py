"""Domain models for documents, review comments and chat history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class CommentStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(slots=True)
class DocumentView:
    id: int
    file_path: str
    title: str | None
    last_opened_at: datetime
    created_at: datetime


@dataclass(slots=True)
class CommentCreate:
    """Input payload for a new review comment."""

    selected_text: str
    instruction: str
    line_hint: str | None = None


@dataclass(slots=True)
class CommentView:
    id: int
    document_id: int
    selected_text: str
    instruction: str
    line_hint: str | None
    status: CommentStatus
    request_id: str | None
    created_at: datetime
    resolved_at: datetime | None

    def to_snapshot(self) -> dict[str, object]:
        """Serializable form stored in changelog ``comments_snapshot``."""

        return {
            "id": self.id,
            "selected_text": self.selected_text,
            "instruction": self.instruction,
            "line_hint": self.line_hint,
            "status": self.status.value,
        }


@dataclass(slots=True)
class ChatMessageView:
    id: int
    session_id: int
    role: ChatRole
    content: str
    context_selection: str | None
    created_at: datetime


@dataclass(slots=True)
class ChatSessionView:
    id: int
    document_id: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class HistoryMessage:
    """Role/content pair passed to the assistant as prior conversation."""

    role: ChatRole
    content: str
