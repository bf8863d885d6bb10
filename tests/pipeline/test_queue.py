"""Tests for the durable job queue and its compare-and-swap claims."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from tabular_ingestor.models.base import session_scope
from tabular_ingestor.models.datasets import ImportedFile
from tabular_ingestor.models.ingestion import FileStatus, IngestionFile, IngestionJob, JobStatus
from tabular_ingestor.models.sources import IngestionSource
from tabular_ingestor.parsers.base import ParsedTable
from tabular_ingestor.pipeline.dedup import DedupManager, DiscoveredFile
from tabular_ingestor.pipeline.quality import compute_quality
from tabular_ingestor.pipeline.queue import STALE_REQUEUE_MESSAGE, JobQueue
from tabular_ingestor.storage.codec import PlainRowCodec
from tabular_ingestor.storage.writer import DatasetCreate, DatasetWriter

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def queued_job(make_source: Callable[..., int]) -> tuple[int, int]:
    """Register one file and enqueue it; returns (file_id, job_id)."""

    source_id = make_source()
    with session_scope() as session:
        registration = DedupManager(session).register(
            DiscoveredFile(
                source_id=source_id,
                remote_path="/data/sales.csv",
                file_name="sales.csv",
                checksum="abc123",
                staging_path="/tmp/staged.csv",
            )
        )
        job = JobQueue(session).enqueue(registration.file_id)
        return registration.file_id, job.id


def _job(job_id: int) -> IngestionJob:
    with session_scope() as session:
        return session.get(IngestionJob, job_id)


def _file(file_id: int) -> IngestionFile:
    with session_scope() as session:
        return session.get(IngestionFile, file_id)


class TestEnqueue:
    def test_enqueue_moves_file_to_queued(self, queued_job: tuple[int, int]) -> None:
        file_id, job_id = queued_job

        job = _job(job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.started_at is None
        assert job.file_hash == "abc123"
        assert job.attempt == 1
        assert _file(file_id).status == FileStatus.QUEUED.value

    def test_enqueue_unknown_file(self) -> None:
        with session_scope() as session, pytest.raises(LookupError):
            JobQueue(session).enqueue(999)

    def test_pending_job_ids_are_ordered_and_bounded(self, queued_job: tuple[int, int]) -> None:
        file_id, first_job = queued_job
        with session_scope() as session:
            queue = JobQueue(session)
            second_job = queue.enqueue(file_id).id
            third_job = queue.enqueue(file_id).id

        with session_scope() as session:
            assert JobQueue(session).pending_job_ids(2) == [first_job, second_job]
            assert _job(third_job).attempt == 3


class TestClaim:
    def test_claim_once(self, queued_job: tuple[int, int]) -> None:
        _, job_id = queued_job

        with session_scope() as session:
            assert JobQueue(session).claim(job_id, now=T0)
        with session_scope() as session:
            assert not JobQueue(session).claim(job_id)

        job = _job(job_id)
        assert job.status == JobStatus.PROCESSING.value
        assert job.started_at is not None

    def test_claimed_job_leaves_pending_list(self, queued_job: tuple[int, int]) -> None:
        _, job_id = queued_job
        with session_scope() as session:
            JobQueue(session).claim(job_id)

        with session_scope() as session:
            assert JobQueue(session).pending_job_ids(10) == []

    def test_concurrent_claims_have_one_winner(self, queued_job: tuple[int, int]) -> None:
        _, job_id = queued_job
        results: list[bool] = []
        lock = threading.Lock()
        barrier = threading.Barrier(6)

        def _worker() -> None:
            barrier.wait()
            with session_scope() as session:
                won = JobQueue(session).claim(job_id)
            with lock:
                results.append(won)

        threads = [threading.Thread(target=_worker) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert len(results) == 6
        assert results.count(True) == 1

    def test_load_snapshots_job_and_file(self, queued_job: tuple[int, int]) -> None:
        file_id, job_id = queued_job

        with session_scope() as session:
            queue = JobQueue(session)
            queue.claim(job_id, now=T0)
            queue.mark_file_processing(file_id)
            claimed = queue.load(job_id)

        assert claimed is not None
        assert claimed.file_id == file_id
        assert claimed.remote_path == "/data/sales.csv"
        assert claimed.checksum == "abc123"
        assert claimed.staging_path == "/tmp/staged.csv"
        assert _file(file_id).status == FileStatus.PROCESSING.value

    def test_load_missing_job(self) -> None:
        with session_scope() as session:
            assert JobQueue(session).load(404) is None


class TestCompletion:
    def test_success_updates_job_file_and_source(self, queued_job: tuple[int, int]) -> None:
        file_id, job_id = queued_job
        with session_scope() as session:
            queue = JobQueue(session)
            queue.claim(job_id)
            queue.complete_success(job_id, imported_file_id=42, rows_imported=3, now=T0)

        job = _job(job_id)
        assert job.status == JobStatus.SUCCESS.value
        assert job.imported_file_id == 42
        assert job.rows_imported == 3
        record = _file(file_id)
        assert record.status == FileStatus.SUCCESS.value
        assert record.rows_imported == 3
        with session_scope() as session:
            source = session.get(IngestionSource, job.source_id)
            assert source.last_error is None
            assert source.last_scan_at is not None

    def test_failure_records_message_everywhere(self, queued_job: tuple[int, int]) -> None:
        file_id, job_id = queued_job
        with session_scope() as session:
            queue = JobQueue(session)
            queue.claim(job_id)
            queue.complete_failure(job_id, "Missing header columns.")

        job = _job(job_id)
        assert job.status == JobStatus.FAILED.value
        record = _file(file_id)
        assert record.status == FileStatus.FAILED.value
        assert record.error_message == "Missing header columns."
        with session_scope() as session:
            source = session.get(IngestionSource, job.source_id)
            assert source.last_error == "Missing header columns."

    def test_completion_never_resurrects_deleted_file(self, queued_job: tuple[int, int]) -> None:
        file_id, job_id = queued_job
        with session_scope() as session:
            queue = JobQueue(session)
            queue.claim(job_id)
            session.get(IngestionFile, file_id).status = FileStatus.DELETED.value
            session.flush()
            queue.complete_success(job_id, imported_file_id=1, rows_imported=1)

        assert _file(file_id).status == FileStatus.DELETED.value

    def test_record_terminal(self, queued_job: tuple[int, int]) -> None:
        file_id, _ = queued_job
        source_id = _file(file_id).source_id
        with session_scope() as session:
            job = JobQueue(session).record_terminal(
                source_id=source_id,
                file_id=file_id,
                file_name="sales.csv",
                status=JobStatus.SKIPPED,
                file_hash="abc123",
                message="Duplicate hash, already imported",
            )
            job_id = job.id

        job = _job(job_id)
        assert job.status == JobStatus.SKIPPED.value
        assert job.started_at is not None
        assert job.finished_at is not None


class TestRequeueStale:
    def test_stale_job_fails_and_retries(self, queued_job: tuple[int, int]) -> None:
        file_id, job_id = queued_job
        with session_scope() as session:
            queue = JobQueue(session)
            queue.claim(job_id, now=T0)
            queue.mark_file_processing(file_id)

        with session_scope() as session:
            requeued = JobQueue(session).requeue_stale(
                timedelta(minutes=5), now=T0 + timedelta(minutes=10)
            )

        assert len(requeued) == 1
        stale = _job(job_id)
        assert stale.status == JobStatus.FAILED.value
        assert stale.error_message == STALE_REQUEUE_MESSAGE
        retry = _job(requeued[0])
        assert retry.status == JobStatus.PENDING.value
        assert retry.started_at is None
        assert retry.attempt == 2
        assert _file(file_id).status == FileStatus.QUEUED.value

    def test_recent_jobs_are_left_alone(self, queued_job: tuple[int, int]) -> None:
        _, job_id = queued_job
        with session_scope() as session:
            JobQueue(session).claim(job_id, now=T0)

        with session_scope() as session:
            requeued = JobQueue(session).requeue_stale(
                timedelta(minutes=5), now=T0 + timedelta(minutes=1)
            )

        assert requeued == []
        assert _job(job_id).status == JobStatus.PROCESSING.value

    def test_pending_jobs_are_not_stale(self, queued_job: tuple[int, int]) -> None:
        with session_scope() as session:
            assert JobQueue(session).requeue_stale(timedelta(seconds=1)) == []

    def _requeue(self, file_id: int, job_id: int) -> int:
        with session_scope() as session:
            queue = JobQueue(session)
            queue.claim(job_id, now=T0)
            queue.mark_file_processing(file_id)
        with session_scope() as session:
            [retry_id] = JobQueue(session).requeue_stale(
                timedelta(minutes=5), now=T0 + timedelta(minutes=10)
            )
        return retry_id

    def test_late_success_is_discarded(self, queued_job: tuple[int, int]) -> None:
        file_id, job_id = queued_job
        retry_id = self._requeue(file_id, job_id)
        table = ParsedTable(columns=["a"], rows=[{"a": "1"}])
        imported_id = DatasetWriter(PlainRowCodec()).write(
            DatasetCreate(name="sales.csv", file_type="csv"),
            table,
            compute_quality(table.columns, table.rows),
        )

        with session_scope() as session:
            completed = JobQueue(session).complete_success(
                job_id, imported_file_id=imported_id, rows_imported=1
            )

        assert completed is False
        assert _job(job_id).status == JobStatus.FAILED.value
        assert _job(job_id).imported_file_id is None
        assert _job(retry_id).status == JobStatus.PENDING.value
        assert _file(file_id).status == FileStatus.QUEUED.value
        with session_scope() as session:
            assert session.get(ImportedFile, imported_id) is None

    def test_late_failure_is_discarded(self, queued_job: tuple[int, int]) -> None:
        file_id, job_id = queued_job
        self._requeue(file_id, job_id)

        with session_scope() as session:
            assert JobQueue(session).complete_failure(job_id, "parser crashed") is False

        assert _job(job_id).error_message == STALE_REQUEUE_MESSAGE
        assert _file(file_id).status == FileStatus.QUEUED.value
