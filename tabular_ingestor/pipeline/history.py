"""Operator view of ingestion jobs and pruning of finished bookkeeping rows."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy import Select, delete, func, select
from sqlalchemy.orm import Session, aliased

from ..models.ingestion import FileStatus, IngestionFile, IngestionJob, JobStatus
from ..models.sources import IngestionSource
from ..schemas.ingestion import HistoryEntry, HistoryPage

DEFAULT_HISTORY_LIMIT = 200
MAX_HISTORY_LIMIT = 500
DELETE_CHUNK_SIZE = 500

_ACTIVE_JOB_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


class PurgeMode(str, Enum):
    DELETED = "deleted"
    ALL = "all"


@dataclass(frozen=True, slots=True)
class PurgeCounts:
    deleted_files: int
    deleted_jobs: int


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_HISTORY_LIMIT
    return max(1, min(MAX_HISTORY_LIMIT, limit))


def _chunks(ids: list[int]) -> list[list[int]]:
    return [
        ids[start : start + DELETE_CHUNK_SIZE] for start in range(0, len(ids), DELETE_CHUNK_SIZE)
    ]


def _rows_imported(job: IngestionJob, file: IngestionFile | None) -> int:
    if job.rows_imported is not None:
        return job.rows_imported
    if file is not None and file.rows_imported is not None:
        return file.rows_imported
    return 0


class IngestionHistory:
    """Reads the job log newest first and prunes rows nothing depends on any more.

    Pruning never touches what change detection and the queue still read:
    the latest live record of every path, records whose datasets exist
    (SUCCESS) and anything with a PENDING or PROCESSING job.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def list_entries(
        self, *, limit: int | None = None, source_id: int | None = None
    ) -> HistoryPage:
        """Newest jobs first, joined with their file record and source."""

        filters = [IngestionJob.source_id == source_id] if source_id else []
        rows = self._session.execute(
            select(IngestionJob, IngestionFile, IngestionSource.name, IngestionSource.kind)
            .outerjoin(IngestionFile, IngestionFile.id == IngestionJob.file_id)
            .outerjoin(IngestionSource, IngestionSource.id == IngestionJob.source_id)
            .where(*filters)
            .order_by(IngestionJob.id.desc())
            .limit(clamp_limit(limit))
        ).all()
        total = self._session.scalar(select(func.count(IngestionJob.id)).where(*filters))

        items = []
        for job, file, source_name, source_kind in rows:
            items.append(
                HistoryEntry(
                    id=job.id,
                    source_id=job.source_id,
                    source_name=source_name,
                    source_kind=source_kind,
                    ingestion_file_id=job.file_id,
                    file_name=job.file_name or (file.file_name if file else None),
                    file_hash=job.file_hash or (file.checksum_sha256 if file else None),
                    status=job.status,
                    rows_imported=_rows_imported(job, file),
                    error_message=job.error_message or (file.error_message if file else None),
                    imported_file_id=job.imported_file_id,
                    attempt=job.attempt,
                    created_at=job.created_at,
                    started_at=job.started_at,
                    finished_at=job.finished_at,
                )
            )
        return HistoryPage(items=items, total=int(total or 0))

    def _active_file_ids(self) -> Select[tuple[int | None]]:
        return select(IngestionJob.file_id).where(
            IngestionJob.file_id.is_not(None),
            IngestionJob.status.in_(_ACTIVE_JOB_STATUSES),
        )

    def _purgeable_file_ids(self, mode: PurgeMode, source_id: int | None) -> list[int]:
        stmt = select(IngestionFile.id).where(IngestionFile.id.not_in(self._active_file_ids()))
        if source_id:
            stmt = stmt.where(IngestionFile.source_id == source_id)
        if mode is PurgeMode.DELETED:
            stmt = stmt.where(IngestionFile.status == FileStatus.DELETED.value)
        else:
            newest = aliased(IngestionFile, name="newest")
            latest_ids = select(func.max(newest.id)).group_by(newest.source_id, newest.remote_path)
            stmt = stmt.where(
                IngestionFile.status != FileStatus.SUCCESS.value,
                (IngestionFile.status == FileStatus.DELETED.value)
                | IngestionFile.id.not_in(latest_ids),
            )
        return list(self._session.scalars(stmt.order_by(IngestionFile.id)))

    def clear(self, mode: PurgeMode, *, source_id: int | None = None) -> PurgeCounts:
        """Delete history rows.

        ``deleted`` removes records of files that disappeared from their
        source, with their jobs. ``all`` also removes superseded records and
        every finished job.
        """

        file_ids = self._purgeable_file_ids(mode, source_id)
        deleted_jobs = 0
        deleted_files = 0
        for chunk in _chunks(file_ids):
            deleted_jobs += self._session.execute(
                delete(IngestionJob)
                .where(IngestionJob.file_id.in_(chunk))
                .execution_options(synchronize_session=False)
            ).rowcount
            deleted_files += self._session.execute(
                delete(IngestionFile)
                .where(IngestionFile.id.in_(chunk))
                .execution_options(synchronize_session=False)
            ).rowcount

        if mode is PurgeMode.ALL:
            finished = delete(IngestionJob).where(
                IngestionJob.status.not_in(_ACTIVE_JOB_STATUSES)
            )
            if source_id:
                finished = finished.where(IngestionJob.source_id == source_id)
            deleted_jobs += self._session.execute(
                finished.execution_options(synchronize_session=False)
            ).rowcount

        return PurgeCounts(deleted_files=deleted_files, deleted_jobs=deleted_jobs)
