"""Transport interface shared by the direct-process and mailbox implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from docpilot.agent.models import TaskKind, TaskResult
from docpilot.agent.routing import TierProfile
from docpilot.workspace.models import HistoryMessage


class TransportError(RuntimeError):
    """Transport could not start a task, with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(slots=True)
class TransportRequest:
    """Everything a transport needs to deliver one task."""

    task_id: str
    kind: TaskKind
    prompt: str
    target: Path
    profile: TierProfile
    message: str = ""
    session_id: int | None = None
    context_selection: str | None = None
    history: list[HistoryMessage] = field(default_factory=list)


class TransportListener(Protocol):
    """Receiver of one task's events; called from transport threads."""

    def on_data(self, text: str) -> None:
        """Whole output so far."""

    def on_complete(self, result: TaskResult) -> None: ...

    def on_error(self, message: str) -> None: ...


class TransportHandle(Protocol):
    def kill(self) -> None:
        """Stop the task; must not block the caller."""


class Transport(Protocol):
    """Protocol implemented by task delivery mechanisms."""

    def send(self, request: TransportRequest, listener: TransportListener) -> TransportHandle:
        """Start delivering ``request``; raise :class:`TransportError` if it cannot start."""

    def read_last_output(self, kind: TaskKind) -> str:
        """Most recent streamed output for ``kind``, or empty string."""
