"""Per-kind accumulation of streamed assistant output."""

from __future__ import annotations

import logging
import threading
from enum import Enum

from docpilot.agent.models import TaskKind

logger = logging.getLogger(__name__)


class StreamMode(str, Enum):
    """How incoming text relates to what was received before."""

    CUMULATIVE = "cumulative"
    DELTA = "delta"


class StreamAggregator:
    """Hold one growing buffer per task kind.

    Consumers always receive the whole text streamed so far, never an
    increment. In ``CUMULATIVE`` mode every update is expected to be the full
    output; a snapshot shorter than the current buffer is ignored so the
    emitted length never decreases during a task. In ``DELTA`` mode updates
    are appended.
    """

    def __init__(self, *, mode: StreamMode = StreamMode.CUMULATIVE) -> None:
        self.mode = mode
        self._buffers: dict[TaskKind, str] = {}
        self._lock = threading.Lock()

    def reset(self, kind: TaskKind) -> None:
        with self._lock:
            self._buffers[kind] = ""

    def current(self, kind: TaskKind) -> str:
        with self._lock:
            return self._buffers.get(kind, "")

    def update(self, kind: TaskKind, text: str) -> str | None:
        """Merge ``text`` into the buffer and return the new full text.

        Returns ``None`` when the update was ignored.
        """

        with self._lock:
            previous = self._buffers.get(kind, "")
            if self.mode is StreamMode.DELTA:
                if not text:
                    return None
                merged = previous + text
            else:
                if len(text) < len(previous):
                    logger.debug(
                        "Ignoring shorter %s stream snapshot (%d < %d chars)",
                        kind.value,
                        len(text),
                        len(previous),
                    )
                    return None
                if text == previous:
                    return None
                merged = text
            self._buffers[kind] = merged
        return merged
