"""Filesystem mailbox transport for sandboxed deployments.

An external watcher picks up the request record, runs the assistant, keeps
rewriting the stream file with the whole output so far, and finally flips the
status record to ``completed`` or ``error``. This side only writes the request
and polls.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from docpilot.agent.contracts import (
    MAILBOX_STATUS_COMPLETED,
    MailboxPaths,
    build_request_record,
    read_status,
    write_json,
    write_pending_status,
)
from docpilot.agent.models import GENERIC_AGENT_ERROR, TaskKind, TaskResult
from docpilot.agent.transport.base import TransportError, TransportListener, TransportRequest
from docpilot.storage.common import utc_now

logger = logging.getLogger(__name__)


class MailboxTaskHandle:
    """Stop handle for one polling loop."""

    def __init__(self, stop: threading.Event, thread: threading.Thread) -> None:
        self._stop = stop
        self.thread = thread

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def kill(self) -> None:
        self._stop.set()


class MailboxTransport:
    """Deliver tasks through fixed request/status/stream files."""

    def __init__(self, *, directory: Path, poll_interval_seconds: float = 0.5) -> None:
        self.directory = directory
        self.poll_interval_seconds = poll_interval_seconds

    def paths(self, kind: TaskKind) -> MailboxPaths:
        return MailboxPaths.for_kind(self.directory, kind)

    def send(self, request: TransportRequest, listener: TransportListener) -> MailboxTaskHandle:
        paths = self.paths(request.kind)
        record = build_request_record(request, timestamp=utc_now().isoformat())
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            paths.stream.write_text("", "utf-8")
            write_json(paths.request, record)
            write_pending_status(paths.status, request.task_id)
        except OSError as error:
            raise TransportError(f"Mailbox write failed: {error}", transient=True) from error

        stop = threading.Event()
        thread = threading.Thread(
            target=self._poll,
            args=(request.task_id, paths, stop, listener),
            daemon=True,
            name=f"docpilot-mailbox-{request.kind.value}-{request.task_id[:8]}",
        )
        handle = MailboxTaskHandle(stop, thread)
        thread.start()
        logger.info("Queued %s task %s in %s", request.kind.value, request.task_id, paths.request)
        return handle

    def read_last_output(self, kind: TaskKind) -> str:
        return _read_text(self.paths(kind).stream)

    def _poll(
        self,
        request_id: str,
        paths: MailboxPaths,
        stop: threading.Event,
        listener: TransportListener,
    ) -> None:
        last_text = ""
        while not stop.wait(self.poll_interval_seconds):
            last_text = self._relay_stream(paths, last_text, listener)

            status = read_status(paths.status)
            if status is None or status.request_id != request_id or not status.terminal:
                continue

            stop.set()
            # The watcher may write its last output right before the status flip.
            last_text = self._relay_stream(paths, last_text, listener)
            if status.status == MAILBOX_STATUS_COMPLETED:
                logger.info("Mailbox task %s completed", request_id)
                listener.on_complete(TaskResult(output=last_text, message=status.message))
            else:
                logger.warning("Mailbox task %s failed: %s", request_id, status.message)
                listener.on_error(status.message or GENERIC_AGENT_ERROR)
            return
        logger.debug("Mailbox polling for %s stopped", request_id)

    @staticmethod
    def _relay_stream(paths: MailboxPaths, last_text: str, listener: TransportListener) -> str:
        text = _read_text(paths.stream)
        if text and text != last_text:
            listener.on_data(text)
            return text
        return last_text


def _read_text(path: Path) -> str:
    try:
        return path.read_text("utf-8")
    except (OSError, UnicodeDecodeError):
        return ""
