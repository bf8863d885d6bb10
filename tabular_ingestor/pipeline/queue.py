"""Durable job queue with compare-and-swap claims."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..models.ingestion import FileStatus, IngestionFile, IngestionJob, JobStatus
from ..models.sources import IngestionSource
from ..storage.writer import purge_datasets
from ..utils.timeutils import utcnow

STALE_REQUEUE_MESSAGE = "Requeued after exceeding the processing time limit"


@dataclass(frozen=True, slots=True)
class ClaimedJob:
    """Snapshot of a claimed job and the file it refers to."""

    job_id: int
    source_id: int
    file_id: int | None
    file_name: str | None
    remote_path: str | None
    checksum: str | None
    staging_path: str | None
    attempt: int
    started_at: datetime | None


class JobQueue:
    """Enqueue, claim and complete :class:`IngestionJob` rows.

    Every state transition is a single conditional statement; no method reads a
    status and then writes based on what it read.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def _next_attempt(self, file: IngestionFile) -> int:
        previous = self._session.scalar(
            select(func.count(IngestionJob.id))
            .join(IngestionFile, IngestionJob.file_id == IngestionFile.id)
            .where(
                IngestionFile.source_id == file.source_id,
                IngestionFile.remote_path == file.remote_path,
            )
        )
        return int(previous or 0) + 1

    def enqueue(self, file_id: int) -> IngestionJob:
        """Insert a PENDING job for ``file_id`` and move the file from NEW to QUEUED."""

        file = self._session.get(IngestionFile, file_id)
        if file is None:
            raise LookupError(f"Ingestion file {file_id} does not exist")

        job = IngestionJob(
            source_id=file.source_id,
            file_id=file.id,
            file_name=file.file_name,
            file_hash=file.checksum_sha256,
            status=JobStatus.PENDING.value,
            attempt=self._next_attempt(file),
        )
        self._session.add(job)
        self._session.execute(
            update(IngestionFile)
            .where(
                IngestionFile.id == file_id,
                IngestionFile.status == FileStatus.NEW.value,
            )
            .values(status=FileStatus.QUEUED.value)
        )
        self._session.flush()
        return job

    def pending_job_ids(self, limit: int) -> list[int]:
        return list(
            self._session.scalars(
                select(IngestionJob.id)
                .where(
                    IngestionJob.status == JobStatus.PENDING.value,
                    IngestionJob.started_at.is_(None),
                )
                .order_by(IngestionJob.id)
                .limit(limit)
            )
        )

    def claim(self, job_id: int, *, now: datetime | None = None) -> bool:
        """Atomically take ownership of an unclaimed job.

        Returns True only for the caller whose update matched the row.
        """

        result = self._session.execute(
            update(IngestionJob)
            .where(
                IngestionJob.id == job_id,
                IngestionJob.started_at.is_(None),
                IngestionJob.status == JobStatus.PENDING.value,
            )
            .values(started_at=now or utcnow(), status=JobStatus.PROCESSING.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def load(self, job_id: int) -> ClaimedJob | None:
        row = self._session.execute(
            select(IngestionJob, IngestionFile)
            .outerjoin(IngestionFile, IngestionJob.file_id == IngestionFile.id)
            .where(IngestionJob.id == job_id)
        ).first()
        if row is None:
            return None
        job, file = row
        return ClaimedJob(
            job_id=job.id,
            source_id=job.source_id,
            file_id=job.file_id,
            file_name=job.file_name or (file.file_name if file else None),
            remote_path=file.remote_path if file else None,
            checksum=job.file_hash or (file.checksum_sha256 if file else None),
            staging_path=file.staging_path if file else None,
            attempt=job.attempt,
            started_at=job.started_at,
        )

    def mark_file_processing(self, file_id: int) -> None:
        self._session.execute(
            update(IngestionFile)
            .where(
                IngestionFile.id == file_id,
                IngestionFile.status.in_([FileStatus.NEW.value, FileStatus.QUEUED.value]),
            )
            .values(status=FileStatus.PROCESSING.value)
        )

    def _finish(
        self, job_id: int, values: dict[str, object], finished: datetime
    ) -> IngestionJob | None:
        """Move a PROCESSING job to a terminal state; None when the job left PROCESSING."""

        result = self._session.execute(
            update(IngestionJob)
            .where(
                IngestionJob.id == job_id,
                IngestionJob.status == JobStatus.PROCESSING.value,
            )
            .values(finished_at=finished, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        job = self._session.get(IngestionJob, job_id)
        if job is not None:
            self._session.refresh(job)
        return job

    def complete_success(
        self,
        job_id: int,
        *,
        imported_file_id: int,
        rows_imported: int,
        now: datetime | None = None,
    ) -> bool:
        """Mark the job and its file SUCCESS.

        Returns False when the job is no longer PROCESSING, for instance after
        ``requeue_stale`` handed the file to a fresh attempt. The dataset just
        written for it is purged in that case so the file is imported once.
        """

        finished = now or utcnow()
        job = self._finish(
            job_id,
            {
                "status": JobStatus.SUCCESS.value,
                "imported_file_id": imported_file_id,
                "rows_imported": rows_imported,
                "error_message": None,
            },
            finished,
        )
        if job is None:
            purge_datasets(self._session, [imported_file_id])
            return False
        if job.file_id is not None:
            self._session.execute(
                update(IngestionFile)
                .where(
                    IngestionFile.id == job.file_id,
                    IngestionFile.status != FileStatus.DELETED.value,
                )
                .values(
                    status=FileStatus.SUCCESS.value,
                    rows_imported=rows_imported,
                    error_message=None,
                    processed_at=finished,
                )
            )
        self._touch_source(job.source_id, last_error=None, now=finished)
        return True

    def complete_failure(self, job_id: int, message: str, *, now: datetime | None = None) -> bool:
        """Mark the job and its file FAILED; False when the job is no longer PROCESSING."""

        finished = now or utcnow()
        job = self._finish(
            job_id,
            {"status": JobStatus.FAILED.value, "error_message": message},
            finished,
        )
        if job is None:
            return False
        if job.file_id is not None:
            self._session.execute(
                update(IngestionFile)
                .where(
                    IngestionFile.id == job.file_id,
                    IngestionFile.status != FileStatus.DELETED.value,
                )
                .values(
                    status=FileStatus.FAILED.value,
                    error_message=message,
                    processed_at=finished,
                )
            )
        self._touch_source(job.source_id, last_error=message, now=finished)
        return True

    def _touch_source(self, source_id: int, *, last_error: str | None, now: datetime) -> None:
        self._session.execute(
            update(IngestionSource)
            .where(IngestionSource.id == source_id)
            .values(last_error=last_error, last_scan_at=now)
        )

    def record_terminal(
        self,
        *,
        source_id: int,
        file_id: int | None,
        file_name: str | None,
        status: JobStatus,
        file_hash: str | None = None,
        message: str | None = None,
        rows_imported: int = 0,
        imported_file_id: int | None = None,
    ) -> IngestionJob:
        """Insert an already-finished job (SKIPPED, FAILED or DELETED) without a claim."""

        now = utcnow()
        job = IngestionJob(
            source_id=source_id,
            file_id=file_id,
            file_name=file_name,
            file_hash=file_hash,
            status=status.value,
            rows_imported=rows_imported,
            imported_file_id=imported_file_id,
            error_message=message,
            started_at=now,
            finished_at=now,
        )
        self._session.add(job)
        self._session.flush()
        return job

    def requeue_stale(self, older_than: timedelta, *, now: datetime | None = None) -> list[int]:
        """Fail PROCESSING jobs started before ``now - older_than`` and enqueue a fresh attempt.

        The stuck job keeps its original ``started_at``; the retry is a new row
        that has to win its own claim.
        """

        current = now or utcnow()
        cutoff = current - older_than
        stale = list(
            self._session.scalars(
                select(IngestionJob).where(
                    IngestionJob.status == JobStatus.PROCESSING.value,
                    IngestionJob.started_at.is_not(None),
                    IngestionJob.started_at < cutoff,
                )
            )
        )

        requeued: list[int] = []
        for job in stale:
            result = self._session.execute(
                update(IngestionJob)
                .where(
                    IngestionJob.id == job.id,
                    IngestionJob.status == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.FAILED.value,
                    error_message=STALE_REQUEUE_MESSAGE,
                    finished_at=current,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1 or job.file_id is None:
                continue
            self._session.execute(
                update(IngestionFile)
                .where(
                    IngestionFile.id == job.file_id,
                    IngestionFile.status == FileStatus.PROCESSING.value,
                )
                .values(status=FileStatus.NEW.value)
            )
            self._session.flush()
            requeued.append(self.enqueue(job.file_id).id)
        return requeued
