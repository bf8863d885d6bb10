"""Scan cycle coordinator: scan due sources, then drain a bounded number of jobs."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import httpx

from ..adapters import ConnectorContext, SourceConnector, build_connector
from ..adapters.token_cache import TokenCache, get_default_token_cache
from ..exceptions import ClaimLostError
from ..models.base import session_scope
from ..models.ingestion import JobStatus
from ..models.repository import SourceRepository
from ..models.sources import IngestionSource
from ..monitoring.metrics import record_claim_lost, record_job_processed
from ..schemas.ingestion import ConnectionCheck, CycleReport, JobOutcome, ScanSummary
from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import log_job_outcome, setup_logger
from ..utils.timeutils import ensure_utc, utcnow
from .alerts import AlertNotifier, DatabaseAlertNotifier, job_failure_alert
from .error_handling import classify_error, error_message
from .processor import FileProcessor
from .queue import ClaimedJob, JobQueue

logger = setup_logger(__name__)


def is_due(source: IngestionSource, now: datetime) -> bool:
    """Enabled scan-kind sources are due once their poll interval has elapsed."""

    if not source.enabled:
        return False
    last_scan = ensure_utc(source.last_scan_at)
    if last_scan is None:
        return True
    interval = timedelta(minutes=max(1, source.poll_interval_minutes or 5))
    return now - last_scan >= interval


class IngestionCoordinator:
    """Runs one ingestion cycle at a time.

    Sources are scanned sequentially and the job drain is capped at
    ``drain_limit`` per cycle. Concurrent coordinators are safe because job
    claims and dedup registration are atomic in the database.
    """

    def __init__(
        self,
        settings: GlobalSettings | None = None,
        *,
        processor: FileProcessor | None = None,
        alerts: AlertNotifier | None = None,
        token_cache: TokenCache | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.alerts = alerts or DatabaseAlertNotifier()
        self.processor = processor or FileProcessor(self.settings, alerts=self.alerts)
        self.context = ConnectorContext(
            settings=self.settings,
            alerts=self.alerts,
            token_cache=token_cache or get_default_token_cache(),
            http_transport=http_transport,
            clock=clock,
        )
        self.clock = clock

    def connector_for(self, source: IngestionSource) -> SourceConnector:
        return build_connector(source, self.context)

    def _load_source(self, source_id: int) -> IngestionSource:
        with session_scope() as session:
            return SourceRepository(session).require(source_id)

    async def run_cycle(self, *, drain_limit: int | None = None) -> CycleReport:
        """Scan every due source, then process up to ``drain_limit`` pending jobs."""

        report = CycleReport()
        now = self.clock()
        with session_scope() as session:
            sources = SourceRepository(session).list_enabled()

        for source in sources:
            connector = self.connector_for(source)
            if not connector.supports_scan or not is_due(source, now):
                continue
            try:
                report.scans.append(await connector.scan())
            except Exception as exc:
                message = error_message(exc)
                logger.exception(
                    "Scan of source %s failed",
                    source.id,
                    extra={"source_id": source.id, "source_kind": source.kind, "status": "error"},
                )
                with session_scope() as session:
                    SourceRepository(session).mark_scanned(source.id, last_error=message)
                report.scans.append(ScanSummary(source_id=source.id, errors=[message]))

        report.jobs = await self.drain(drain_limit or self.settings.ingestion.drain_limit)
        return report

    async def scan_source(self, source_id: int, *, retry_failed: bool = False) -> ScanSummary:
        """Manual scan of one source regardless of its poll interval."""

        source = self._load_source(source_id)
        return await self.connector_for(source).scan(retry_failed=retry_failed)

    async def check_source(self, source_id: int) -> ConnectionCheck:
        """Check that a source's location is reachable without scanning it."""

        source = self._load_source(source_id)
        return await self.connector_for(source).check_connection()

    async def drain(self, limit: int) -> list[JobOutcome]:
        with session_scope() as session:
            job_ids = JobQueue(session).pending_job_ids(limit)

        outcomes: list[JobOutcome] = []
        for job_id in job_ids:
            outcome = await self.process_job(job_id)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def _claim(self, job_id: int) -> ClaimedJob:
        with session_scope() as session:
            queue = JobQueue(session)
            if not queue.claim(job_id, now=self.clock()):
                raise ClaimLostError(job_id)
            job = queue.load(job_id)
            if job is None:
                raise ClaimLostError(job_id)
            if job.file_id is not None:
                queue.mark_file_processing(job.file_id)
            return job

    async def process_job(self, job_id: int) -> JobOutcome | None:
        """Claim and run one job. Returns None when another worker holds the claim."""

        try:
            job = self._claim(job_id)
        except ClaimLostError as exc:
            record_claim_lost()
            logger.info(str(exc), extra={"job_id": job_id, "status": "claim_lost"})
            return None

        started = time.perf_counter()
        source = self._load_source(job.source_id)
        connector = self.connector_for(source)
        staged: Path | None = None
        outcome = JobOutcome(
            job_id=job.job_id, source_id=job.source_id, file_name=job.file_name, status=""
        )
        try:
            staged = await connector.stage(job)
            result = await asyncio.to_thread(
                self.processor.process,
                path=staged,
                file_name=job.file_name or staged.name,
                project_id=source.project_id,
                storage_path=job.remote_path,
                template_rule=source.template_rule,
                source_id=source.id,
                source_kind=source.kind,
            )
            with session_scope() as session:
                completed = JobQueue(session).complete_success(
                    job.job_id,
                    imported_file_id=result.imported_file_id,
                    rows_imported=result.rows_imported,
                    now=self.clock(),
                )
            if not completed:
                raise ClaimLostError(job.job_id)
            outcome.status = JobStatus.SUCCESS.value
            outcome.rows_imported = result.rows_imported
            outcome.imported_file_id = result.imported_file_id
        except ClaimLostError as exc:
            self._report_lost_claim(exc, job)
            return None
        except Exception as exc:
            message = error_message(exc)
            classification = classify_error(exc)
            with session_scope() as session:
                completed = JobQueue(session).complete_failure(
                    job.job_id, message, now=self.clock()
                )
            if not completed:
                self._report_lost_claim(ClaimLostError(job.job_id), job)
                return None
            outcome.status = JobStatus.FAILED.value
            outcome.error = message
            self.alerts.notify(
                job_failure_alert(
                    source_id=source.id,
                    project_id=source.project_id,
                    file_name=job.file_name or "",
                    checksum=job.checksum,
                    fallback_key=job.file_id or job.job_id,
                    message=message,
                    job_id=job.job_id,
                )
            )
            if classification.classification == "unexpected":
                logger.exception(
                    "Unexpected error while processing job %s",
                    job.job_id,
                    extra={"job_id": job.job_id, "source_id": source.id},
                )
        finally:
            await connector.release(job, staged)

        outcome.duration_ms = int((time.perf_counter() - started) * 1000)
        record_job_processed(source.kind, outcome.status)
        extra = {"rows": outcome.rows_imported} if outcome.rows_imported is not None else {}
        if outcome.error:
            extra["error"] = outcome.error
        log_job_outcome(
            logger,
            job_id=job.job_id,
            source_id=source.id,
            source_kind=source.kind,
            file_name=job.file_name or "-",
            status=outcome.status,
            duration_ms=outcome.duration_ms,
            **extra,
        )
        return outcome

    def _report_lost_claim(self, exc: ClaimLostError, job: ClaimedJob) -> None:
        # The job was requeued while running; its newer attempt owns the file.
        record_claim_lost()
        logger.warning(
            "%s; discarding this attempt's result",
            exc,
            extra={"job_id": job.job_id, "source_id": job.source_id, "status": "claim_lost"},
        )

    def requeue_stale(self, older_than: timedelta) -> list[int]:
        """Operator action: retry jobs stuck in PROCESSING longer than ``older_than``."""

        with session_scope() as session:
            requeued = JobQueue(session).requeue_stale(older_than, now=self.clock())
        if requeued:
            logger.warning("Requeued %d stale job(s)", len(requeued), extra={"status": "requeued"})
        return requeued
