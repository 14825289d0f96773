"""File-based contracts shared with an external mailbox watcher."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from docpilot.agent.models import TaskKind
from docpilot.workspace.models import ChatRole

if TYPE_CHECKING:
    from docpilot.agent.transport.base import TransportRequest

MAILBOX_STATUS_PENDING = "pending"
MAILBOX_STATUS_COMPLETED = "completed"
MAILBOX_STATUS_ERROR = "error"
TERMINAL_MAILBOX_STATUSES = frozenset({MAILBOX_STATUS_COMPLETED, MAILBOX_STATUS_ERROR})


@dataclass(frozen=True, slots=True)
class MailboxPaths:
    """Fixed request/status/stream file triple for one task kind."""

    request: Path
    status: Path
    stream: Path

    @classmethod
    def for_kind(cls, directory: Path, kind: TaskKind) -> MailboxPaths:
        prefix = f"docpilot-{kind.value}"
        return cls(
            request=directory / f"{prefix}-request.json",
            status=directory / f"{prefix}-status.json",
            stream=directory / f"{prefix}-stream.log",
        )


@dataclass(frozen=True, slots=True)
class MailboxStatus:
    """Parsed status record written by the watcher."""

    request_id: str
    status: str
    message: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_MAILBOX_STATUSES


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def build_request_record(request: TransportRequest, *, timestamp: str) -> dict[str, Any]:
    """Serialize one transport request into the watcher's request record."""

    if request.kind is TaskKind.EDIT:
        return {
            "id": request.task_id,
            "timestamp": timestamp,
            "filePath": str(request.target),
            "prompt": request.prompt,
            "status": MAILBOX_STATUS_PENDING,
            "model": request.profile.model,
            "maxTurns": request.profile.max_turns,
            "allowedTools": (
                list(request.profile.allowed_tools)
                if request.profile.allowed_tools is not None
                else None
            ),
        }
    return {
        "id": request.task_id,
        "timestamp": timestamp,
        "sessionId": request.session_id,
        "documentPath": str(request.target),
        "message": request.message,
        "contextSelection": request.context_selection,
        "history": [
            {"role": ChatRole(item.role).value, "content": item.content}
            for item in request.history
        ],
        "status": MAILBOX_STATUS_PENDING,
        "model": request.profile.model,
        "maxTurns": request.profile.max_turns,
    }


def write_pending_status(path: Path, request_id: str) -> None:
    write_json(path, {"id": request_id, "status": MAILBOX_STATUS_PENDING})


def read_status(path: Path) -> MailboxStatus | None:
    """Parse status record; missing or malformed files read as ``None``."""

    try:
        raw = load_json(path)
    except (OSError, ValueError, TypeError):
        return None
    request_id = raw.get("id")
    status = raw.get("status")
    message = raw.get("message")
    if not isinstance(request_id, str) or not isinstance(status, str):
        return None
    if message is not None and not isinstance(message, str):
        message = str(message)
    return MailboxStatus(request_id=request_id, status=status.strip().lower(), message=message)
