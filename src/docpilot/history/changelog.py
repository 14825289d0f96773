"""Append/patch audit trail of edit-task outcomes."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from docpilot.history.models import (
    TERMINAL_CHANGELOG_STATUSES,
    ChangelogEntryView,
    ChangelogStatus,
)
from docpilot.storage.common import to_db_datetime, to_utc_aware_datetime, utc_now
from docpilot.storage.database import Database, find_document, get_or_create_document
from docpilot.storage.sqlmodel_models import ChangelogRow

logger = logging.getLogger(__name__)


class ChangelogRecorder:
    """Best-effort changelog persistence.

    None of these calls may fail the task they describe: storage errors are
    logged and turned into ``None`` / empty results.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def create(
        self,
        document: str | Path,
        request_id: str,
        comments_snapshot: str | None,
    ) -> int | None:
        """Open a pending entry for one edit request and return its id."""

        try:
            with self.database.session() as session:
                doc = get_or_create_document(session, document)
                row = ChangelogRow(
                    document_id=doc.id,
                    request_id=request_id,
                    comments_snapshot=comments_snapshot,
                    status=ChangelogStatus.PENDING.value,
                    created_at=to_db_datetime(utc_now()),
                )
                session.add(row)
                session.commit()
                return row.id
        except SQLAlchemyError:
            logger.exception("Failed to create changelog entry for request %s", request_id)
            return None

    def patch(
        self,
        entry_id: int,
        status: ChangelogStatus | str,
        stream_log: str | None = None,
        summary: str | None = None,
    ) -> ChangelogEntryView | None:
        """Record the outcome of an entry.

        Only ``completed`` and ``error`` are accepted; anything else leaves the
        row untouched. ``completed_at`` is stamped on the first terminal patch
        and kept on later ones.
        """

        try:
            resolved = ChangelogStatus(status)
        except ValueError:
            logger.warning("Ignoring changelog patch with unknown status %r", status)
            return None
        if resolved not in TERMINAL_CHANGELOG_STATUSES:
            logger.warning("Ignoring changelog patch with non-terminal status %r", status)
            return None

        try:
            with self.database.session() as session:
                row = session.get(ChangelogRow, entry_id)
                if row is None:
                    logger.warning("Changelog entry not found: %s", entry_id)
                    return None
                row.status = resolved.value
                if stream_log is not None:
                    row.stream_log = stream_log
                if summary is not None:
                    row.summary = summary
                if row.completed_at is None:
                    row.completed_at = to_db_datetime(utc_now())
                session.add(row)
                session.commit()
                return _to_entry_view(row)
        except SQLAlchemyError:
            logger.exception("Failed to patch changelog entry %s", entry_id)
            return None

    def list_entries(self, document: str | Path) -> list[ChangelogEntryView]:
        """Entries for ``document``, newest first."""

        try:
            with self.database.session() as session:
                doc = find_document(session, document)
                if doc is None:
                    return []
                rows = session.exec(
                    select(ChangelogRow)
                    .where(ChangelogRow.document_id == doc.id)
                    .order_by(col(ChangelogRow.created_at).desc(), col(ChangelogRow.id).desc()),
                ).all()
        except SQLAlchemyError:
            logger.exception("Failed to list changelog for %s", document)
            return []
        return [_to_entry_view(row) for row in rows]

    def clear(self, document: str | Path) -> int:
        try:
            with self.database.session() as session:
                doc = find_document(session, document)
                if doc is None:
                    return 0
                result = session.exec(
                    sa_delete(ChangelogRow).where(col(ChangelogRow.document_id) == doc.id),
                )
                session.commit()
                return int(result.rowcount or 0)
        except SQLAlchemyError:
            logger.exception("Failed to clear changelog for %s", document)
            return 0


def _to_entry_view(row: ChangelogRow) -> ChangelogEntryView:
    return ChangelogEntryView(
        id=row.id or 0,
        document_id=row.document_id,
        request_id=row.request_id,
        status=ChangelogStatus(row.status),
        comments_snapshot=row.comments_snapshot,
        stream_log=row.stream_log,
        summary=row.summary,
        created_at=to_utc_aware_datetime(row.created_at),
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
    )
