"""Shared engine and document lookup for all repositories."""

from __future__ import annotations

from pathlib import Path

from sqlmodel import Session, select

from docpilot.storage.alembic_runner import upgrade_head
from docpilot.storage.common import (
    build_sqlite_engine,
    normalize_document_path,
    to_db_datetime,
    utc_now,
)
from docpilot.storage.sqlmodel_models import DocumentRow


class Database:
    """SQLModel + SQLite facade owning one engine for the editing session."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    def session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)


def find_document(session: Session, path: str | Path) -> DocumentRow | None:
    """Return the document row for ``path`` without creating it."""

    return session.exec(
        select(DocumentRow).where(DocumentRow.file_path == normalize_document_path(path)),
    ).one_or_none()


def get_or_create_document(session: Session, path: str | Path) -> DocumentRow:
    """Return the document row for ``path``, creating it lazily on first reference.

    The caller owns the transaction; the new row is flushed so its id is usable.
    """

    existing = find_document(session, path)
    if existing is not None:
        return existing
    now = to_db_datetime(utc_now())
    file_path = normalize_document_path(path)
    row = DocumentRow(
        file_path=file_path,
        title=Path(file_path).stem,
        last_opened_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    session.flush()
    return row
