"""Deduplicated, ordered whole-document content versions."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from docpilot.history.models import SnapshotAppendResult, SnapshotMeta, SnapshotSource, SnapshotView
from docpilot.storage.common import to_db_datetime, to_utc_aware_datetime, utc_now
from docpilot.storage.database import Database, find_document, get_or_create_document
from docpilot.storage.sqlmodel_models import SnapshotRow

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Snapshot persistence backed by SQLModel + SQLite.

    Ids come from an AUTOINCREMENT key, so they only ever grow even though the
    id space is shared by all documents. Every "previous" lookup is scoped to
    the document that owns the reference snapshot. Persistence failures are
    logged and reported as ``None`` / empty results, never raised.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def append(
        self,
        document: str | Path,
        content: str,
        source: SnapshotSource | str = SnapshotSource.SAVE,
    ) -> SnapshotAppendResult | None:
        """Store ``content`` unless it is identical to the latest snapshot of ``document``."""

        source = SnapshotSource(source)
        try:
            with self.database.session() as session:
                doc = get_or_create_document(session, document)
                latest = session.exec(
                    select(SnapshotRow.content)
                    .where(SnapshotRow.document_id == doc.id)
                    .order_by(col(SnapshotRow.id).desc())
                    .limit(1),
                ).first()
                if latest is not None and latest == content:
                    session.commit()
                    return SnapshotAppendResult(skipped=True)

                row = SnapshotRow(
                    document_id=doc.id,
                    content=content,
                    source=source.value,
                    created_at=to_db_datetime(utc_now()),
                )
                session.add(row)
                session.commit()
                return SnapshotAppendResult(id=row.id)
        except SQLAlchemyError:
            logger.exception("Failed to append %s snapshot for %s", source.value, document)
            return None

    def list_snapshots(self, document: str | Path, limit: int = 50) -> list[SnapshotMeta]:
        """Snapshot metadata for ``document``, newest first."""

        try:
            with self.database.session() as session:
                doc = find_document(session, document)
                if doc is None:
                    return []
                rows = session.exec(
                    select(SnapshotRow.id, SnapshotRow.source, SnapshotRow.created_at)
                    .where(SnapshotRow.document_id == doc.id)
                    .order_by(col(SnapshotRow.id).desc())
                    .limit(max(1, limit)),
                ).all()
        except SQLAlchemyError:
            logger.exception("Failed to list snapshots for %s", document)
            return []
        return [
            SnapshotMeta(
                id=snapshot_id,
                source=SnapshotSource(source),
                created_at=to_utc_aware_datetime(created_at),
            )
            for snapshot_id, source, created_at in rows
        ]

    def get(self, snapshot_id: int) -> SnapshotView | None:
        try:
            with self.database.session() as session:
                row = session.get(SnapshotRow, snapshot_id)
        except SQLAlchemyError:
            logger.exception("Failed to load snapshot %s", snapshot_id)
            return None
        return _to_snapshot_view(row) if row is not None else None

    def latest(
        self,
        document: str | Path,
        source: SnapshotSource | str | None = None,
    ) -> SnapshotView | None:
        """Newest snapshot of ``document``, optionally limited to one source."""

        try:
            with self.database.session() as session:
                doc = find_document(session, document)
                if doc is None:
                    return None
                statement = select(SnapshotRow).where(SnapshotRow.document_id == doc.id)
                if source is not None:
                    statement = statement.where(SnapshotRow.source == SnapshotSource(source).value)
                row = session.exec(statement.order_by(col(SnapshotRow.id).desc()).limit(1)).first()
        except SQLAlchemyError:
            logger.exception("Failed to load latest snapshot of %s", document)
            return None
        return _to_snapshot_view(row) if row is not None else None

    def get_previous(self, snapshot_id: int) -> SnapshotView | None:
        """Return the snapshot right before ``snapshot_id`` for the same document."""

        try:
            with self.database.session() as session:
                current = session.get(SnapshotRow, snapshot_id)
                if current is None:
                    return None
                row = session.exec(
                    select(SnapshotRow)
                    .where(
                        SnapshotRow.document_id == current.document_id,
                        SnapshotRow.id < snapshot_id,
                    )
                    .order_by(col(SnapshotRow.id).desc())
                    .limit(1),
                ).first()
        except SQLAlchemyError:
            logger.exception("Failed to load snapshot preceding %s", snapshot_id)
            return None
        return _to_snapshot_view(row) if row is not None else None

    def clear(self, document: str | Path) -> int:
        """Delete every snapshot of ``document`` and return how many were removed."""

        try:
            with self.database.session() as session:
                doc = find_document(session, document)
                if doc is None:
                    return 0
                result = session.exec(
                    sa_delete(SnapshotRow).where(col(SnapshotRow.document_id) == doc.id),
                )
                session.commit()
                return int(result.rowcount or 0)
        except SQLAlchemyError:
            logger.exception("Failed to clear snapshots for %s", document)
            return 0


def _to_snapshot_view(row: SnapshotRow) -> SnapshotView:
    return SnapshotView(
        id=row.id or 0,
        document_id=row.document_id,
        content=row.content,
        source=SnapshotSource(row.source),
        created_at=to_utc_aware_datetime(row.created_at),
    )
