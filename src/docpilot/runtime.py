"""Wiring of storage, history, transport and dispatcher into one editing session."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from docpilot.agent.dispatcher import TaskDispatcher
from docpilot.agent.models import TaskObserver
from docpilot.agent.routing import TierRouting
from docpilot.agent.transport import Transport, build_transport
from docpilot.agent.workflow import EditingSession
from docpilot.config import Settings
from docpilot.history.changelog import ChangelogRecorder
from docpilot.history.review import ReviewWorkflow
from docpilot.history.snapshots import SnapshotStore
from docpilot.storage.database import Database
from docpilot.workspace.files import DocumentFiles
from docpilot.workspace.repository import WorkspaceRepository


@contextmanager
def open_session(
    settings: Settings,
    *,
    observer: TaskObserver | None = None,
    transport: Transport | None = None,
    reload: Callable[[Path, str], None] | None = None,
) -> Iterator[EditingSession]:
    """Yield a ready editing session; the active task is cancelled on exit."""

    settings.validate()
    database = Database(settings.db_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    database.init_schema()
    repository = WorkspaceRepository(database)
    files = DocumentFiles(
        SnapshotStore(database),
        backup_dir_name=settings.history.backup_dir_name,
    )
    dispatcher = TaskDispatcher(
        transport or build_transport(settings),
        TierRouting.from_settings(settings.agent),
    )
    session = EditingSession(
        dispatcher=dispatcher,
        repository=repository,
        changelog=ChangelogRecorder(database),
        files=files,
        review=ReviewWorkflow(repository, files, reload=reload),
        observer=observer,
    )
    try:
        yield session
    finally:
        session.cancel()
        database.close()
