"""Domain models for agent task dispatch."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum


class TaskKind(str, Enum):
    EDIT = "edit"
    CHAT = "chat"


class TaskStatus(str, Enum):
    """Ephemeral task lifecycle; never persisted."""

    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERROR = "error"


class Tier(str, Enum):
    """Capability/speed tier of the external assistant."""

    FAST = "fast"
    DEFAULT = "default"
    QUALITY = "quality"


GENERIC_DISPATCH_ERROR = "Failed to communicate with the assistant"
GENERIC_AGENT_ERROR = "Assistant task failed"


@dataclass(frozen=True, slots=True)
class TaskResult:
    """Final payload reported by a transport.

    ``output`` is the full accumulated stream; ``message`` is the optional
    human-readable status line some transports provide.
    """

    output: str
    message: str | None = None


@dataclass(slots=True)
class ActiveTask:
    """Handle for the one task currently owned by the dispatcher."""

    task_id: str
    kind: TaskKind
    generation: int
    tier: Tier
    status: TaskStatus = TaskStatus.DISPATCHED


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Completion notification delivered to observers."""

    task_id: str
    kind: TaskKind
    result: TaskResult


def _ignore(*_args: object) -> None:
    return None


@dataclass(slots=True)
class TaskObserver:
    """Three observation channels of one dispatched task.

    ``on_data`` always receives the whole text streamed so far for the task,
    never an increment.
    """

    on_data: Callable[[TaskKind, str], None] = field(default=_ignore)
    on_complete: Callable[[TaskOutcome], None] = field(default=_ignore)
    on_error: Callable[[TaskKind, str], None] = field(default=_ignore)
