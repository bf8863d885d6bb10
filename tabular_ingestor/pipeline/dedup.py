"""Change detection per (source, remote path) and remote deletion bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Integer,
    String,
    and_,
    exists,
    func,
    insert,
    literal,
    select,
    update,
)
from sqlalchemy.orm import Session, aliased

from ..models.ingestion import FileStatus, IngestionFile, IngestionJob, JobStatus
from ..storage.writer import purge_datasets
from ..utils.timeutils import utcnow


@dataclass(slots=True)
class DiscoveredFile:
    """A candidate file as reported by a scanner or push."""

    source_id: int
    remote_path: str
    file_name: str
    checksum: str
    file_size: int | None = None
    last_modified: datetime | None = None
    original_path: str | None = None
    staging_path: str | None = None


@dataclass(frozen=True, slots=True)
class Registration:
    created: bool
    file_id: int | None
    updated: bool


@dataclass(frozen=True, slots=True)
class DeletionResult:
    file_id: int
    job_id: int
    deleted_imported_count: int


class DedupManager:
    """Decides whether a discovery is new or changed.

    The decision and the insert are one ``INSERT ... SELECT ... WHERE NOT
    EXISTS`` statement, so two scanners racing on the same path cannot both
    register the same checksum.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def latest_for_path(self, source_id: int, remote_path: str) -> IngestionFile | None:
        return self._session.scalars(
            select(IngestionFile)
            .where(
                IngestionFile.source_id == source_id,
                IngestionFile.remote_path == remote_path,
            )
            .order_by(IngestionFile.id.desc())
            .limit(1)
        ).first()

    def register(self, discovered: DiscoveredFile, *, retry_failed: bool = False) -> Registration:
        """Insert a NEW record unless the latest record for the path has the same checksum.

        A latest record that is DELETED is always superseded. A FAILED one is
        superseded only when ``retry_failed`` is set. A NEW record without any
        job is an abandoned registration and is superseded as well.
        """

        previous = self.latest_for_path(discovered.source_id, discovered.remote_path)

        reopen_statuses = [FileStatus.DELETED.value]
        if retry_failed:
            reopen_statuses.append(FileStatus.FAILED.value)

        latest = aliased(IngestionFile, name="latest")
        prior = aliased(IngestionFile, name="prior")
        latest_id = (
            select(func.max(prior.id))
            .where(
                prior.source_id == discovered.source_id,
                prior.remote_path == discovered.remote_path,
            )
            .scalar_subquery()
        )
        abandoned = and_(
            latest.status == FileStatus.NEW.value,
            ~exists(select(IngestionJob.id).where(IngestionJob.file_id == latest.id)),
        )
        unchanged = exists(
            select(latest.id).where(
                latest.id == latest_id,
                latest.checksum_sha256 == discovered.checksum,
                latest.status.not_in(reopen_statuses),
                ~abandoned,
            )
        )

        now = utcnow()
        candidate = select(
            literal(discovered.source_id, Integer),
            literal(discovered.remote_path, String),
            literal(discovered.original_path, String),
            literal(discovered.file_name, String),
            literal(discovered.file_size, Integer),
            literal(discovered.last_modified, DateTime(timezone=True)),
            literal(discovered.checksum, String),
            literal(discovered.staging_path, String),
            literal(FileStatus.NEW.value, String),
            literal(now, DateTime(timezone=True)),
        ).where(~unchanged)

        result = self._session.execute(
            insert(IngestionFile).from_select(
                [
                    "source_id",
                    "remote_path",
                    "original_path",
                    "file_name",
                    "file_size",
                    "last_modified",
                    "checksum_sha256",
                    "staging_path",
                    "status",
                    "first_seen_at",
                ],
                candidate,
            )
        )
        if not result.rowcount:
            return Registration(created=False, file_id=None, updated=False)

        created = self.latest_for_path(discovered.source_id, discovered.remote_path)
        return Registration(
            created=True,
            file_id=created.id if created else None,
            updated=previous is not None,
        )

    def find_imported_checksum(self, source_id: int, checksum: str) -> IngestionFile | None:
        """Most recent SUCCESS record for this source with the given content hash."""

        return self._session.scalars(
            select(IngestionFile)
            .where(
                IngestionFile.source_id == source_id,
                IngestionFile.checksum_sha256 == checksum,
                IngestionFile.status == FileStatus.SUCCESS.value,
            )
            .order_by(IngestionFile.id.desc())
            .limit(1)
        ).first()

    def latest_by_prefix(self, source_id: int, prefix: str) -> list[IngestionFile]:
        """Latest record for every remote path of a source starting with ``prefix``."""

        newest = (
            select(func.max(IngestionFile.id).label("id"))
            .where(
                IngestionFile.source_id == source_id,
                IngestionFile.remote_path.like(f"{prefix}%"),
            )
            .group_by(IngestionFile.remote_path)
            .subquery()
        )
        return list(
            self._session.scalars(
                select(IngestionFile).join(newest, IngestionFile.id == newest.c.id)
            )
        )

    def mark_deleted(
        self,
        *,
        source_id: int,
        remote_path: str,
        file_name: str,
        reason: str,
        original_path: str | None = None,
    ) -> DeletionResult:
        """Mark every record for the path DELETED, purge linked datasets and log a DELETED job."""

        now = utcnow()
        file_ids = list(
            self._session.scalars(
                select(IngestionFile.id).where(
                    IngestionFile.source_id == source_id,
                    IngestionFile.remote_path == remote_path,
                )
            )
        )

        if file_ids:
            self._session.execute(
                update(IngestionFile)
                .where(IngestionFile.id.in_(file_ids))
                .values(
                    status=FileStatus.DELETED.value,
                    error_message=reason,
                    rows_imported=0,
                    processed_at=now,
                )
            )
            latest_file_id = max(file_ids)
        else:
            record = IngestionFile(
                source_id=source_id,
                remote_path=remote_path,
                original_path=original_path,
                file_name=file_name,
                status=FileStatus.DELETED.value,
                error_message=reason,
                rows_imported=0,
                processed_at=now,
            )
            self._session.add(record)
            self._session.flush()
            latest_file_id = record.id

        imported_ids: list[int] = []
        if file_ids:
            imported_ids = [
                file_id
                for file_id in self._session.scalars(
                    select(IngestionJob.imported_file_id)
                    .where(
                        IngestionJob.file_id.in_(file_ids),
                        IngestionJob.imported_file_id.is_not(None),
                    )
                    .distinct()
                )
                if file_id
            ]
        purged = purge_datasets(self._session, imported_ids)

        job = IngestionJob(
            source_id=source_id,
            file_id=latest_file_id,
            file_name=file_name,
            status=JobStatus.DELETED.value,
            rows_imported=0,
            error_message=reason,
            started_at=now,
            finished_at=now,
        )
        self._session.add(job)
        self._session.flush()

        return DeletionResult(file_id=latest_file_id, job_id=job.id, deleted_imported_count=purged)
