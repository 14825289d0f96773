"""Shared test fixtures."""

from __future__ import annotations

import os
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from docpilot.agent.models import TaskKind, TaskResult, Tier
from docpilot.agent.routing import TierProfile
from docpilot.agent.transport.base import TransportError, TransportListener, TransportRequest
from docpilot.storage.database import Database

SRC_DIR = Path(__file__).resolve().parents[1] / "src"

ECHO_AGENT_COMMAND = f"{sys.executable} -m docpilot.agent.transport.echo_agent"


@dataclass
class FakeHandle:
    killed: bool = False

    def kill(self) -> None:
        self.killed = True


@dataclass
class SentTask:
    request: TransportRequest
    listener: TransportListener
    handle: FakeHandle


@dataclass
class FakeTransport:
    """Scripted transport: tests drive the listener by hand."""

    sent: list[SentTask] = field(default_factory=list)
    fail_with: TransportError | None = None
    outputs: dict[TaskKind, str] = field(default_factory=dict)

    def send(self, request: TransportRequest, listener: TransportListener) -> FakeHandle:
        if self.fail_with is not None:
            raise self.fail_with
        handle = FakeHandle()
        self.sent.append(SentTask(request=request, listener=listener, handle=handle))
        return handle

    def read_last_output(self, kind: TaskKind) -> str:
        return self.outputs.get(kind, "")

    @property
    def last(self) -> SentTask:
        return self.sent[-1]


class RecordingListener:
    """Transport listener collecting events from worker threads."""

    def __init__(self) -> None:
        self.data: list[str] = []
        self.completed: list[TaskResult] = []
        self.errors: list[str] = []
        self.finished = threading.Event()
        self._lock = threading.Lock()

    def on_data(self, text: str) -> None:
        with self._lock:
            self.data.append(text)

    def on_complete(self, result: TaskResult) -> None:
        with self._lock:
            self.completed.append(result)
        self.finished.set()

    def on_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)
        self.finished.set()

    def wait(self, timeout: float = 10.0) -> bool:
        return self.finished.wait(timeout)


def make_profile(model: str = "sonnet", *, max_turns: int | None = None) -> TierProfile:
    return TierProfile(tier=Tier.DEFAULT, model=model, max_turns=max_turns, allowed_tools=None)


@pytest.fixture()
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def database(tmp_path: Path):
    db = Database(tmp_path / "docpilot.db")
    db.init_schema()
    yield db
    db.close()


@pytest.fixture()
def echo_agent_env(monkeypatch, tmp_path: Path) -> Path:
    """Make the echo agent importable from spawned processes and isolate the mailbox dir."""

    existing = os.environ.get("PYTHONPATH")
    pythonpath = str(SRC_DIR) if not existing else f"{SRC_DIR}{os.pathsep}{existing}"
    monkeypatch.setenv("PYTHONPATH", pythonpath)
    mailbox_dir = tmp_path / "mailbox"
    monkeypatch.setenv("DOCPILOT_MAILBOX_DIR", str(mailbox_dir))
    return mailbox_dir
