"""Agent push ingress: authenticate, validate and import one uploaded file synchronously."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from ..exceptions import (
    AgentAuthenticationError,
    ClaimLostError,
    FileRejectedError,
    FileTooLargeError,
    MalwareDetectedError,
    PushRejectedError,
    SourceUnavailableError,
    UnsupportedFormatError,
)
from ..models.alerts import AlertSeverity
from ..models.base import session_scope
from ..models.ingestion import FileStatus, IngestionFile, IngestionJob, JobStatus
from ..models.repository import SourceRepository
from ..models.sources import IngestionSource, SourceKind
from ..monitoring.metrics import record_agent_upload, record_job_processed
from ..parsers import get_parser
from ..schemas.ingestion import AgentDeleteResult, AgentUploadResult
from ..utils.agent_keys import verify_agent_key
from ..utils.audit import AuditAction, AuditOutcome, get_audit_logger
from ..utils.config import GlobalSettings, get_settings
from ..utils.file_readers import compute_sha256, remove_quietly
from ..utils.logging import log_job_outcome, setup_logger
from ..utils.patterns import file_extension, normalize_remote_path
from ..utils.timeutils import utcnow
from .alerts import AlertNotifier, DatabaseAlertNotifier, agent_rejection_alert
from .dedup import DedupManager
from .error_handling import error_message
from .processor import FileProcessor
from .queue import JobQueue
from .templates import evaluate_template, parse_template_rule

logger = setup_logger(__name__, context={"source_kind": SourceKind.AGENT_PUSH.value})

SOURCE_INACTIVE = "Source is inactive."
WRONG_SOURCE_KIND = "Source type is not agent_push."
MISSING_AGENT_KEY = "Missing agent API key."
INVALID_AGENT_KEY = "Invalid agent API key."
DUPLICATE_JOB_MESSAGE = "Duplicate hash, already imported"
DUPLICATE_RESPONSE_MESSAGE = "Duplicate file hash, ingestion skipped."


@dataclass(frozen=True, slots=True)
class _FailedPair:
    file_id: int
    job_id: int


class AgentPushService:
    """Handles uploads and deletion notices from remote watcher agents."""

    def __init__(
        self,
        settings: GlobalSettings | None = None,
        *,
        processor: FileProcessor | None = None,
        alerts: AlertNotifier | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.alerts = alerts or DatabaseAlertNotifier()
        self.processor = processor or FileProcessor(self.settings, alerts=self.alerts)
        self.audit = get_audit_logger()

    def authenticate(
        self,
        source_id: int,
        agent_key: str | None,
        *,
        client_ip: str | None = None,
    ) -> IngestionSource:
        """Resolve an enabled push source and verify the agent secret against its stored hash."""

        with session_scope() as session:
            repository = SourceRepository(session)
            source = repository.require(source_id)
            if not source.enabled:
                raise SourceUnavailableError(SOURCE_INACTIVE)
            if source.source_kind is not SourceKind.AGENT_PUSH:
                raise SourceUnavailableError(WRONG_SOURCE_KIND)

            if not agent_key:
                reason = MISSING_AGENT_KEY
            elif not verify_agent_key(agent_key, source.agent_key_hash):
                reason = INVALID_AGENT_KEY
            else:
                reason = None

            if reason is None:
                repository.touch_agent_seen(source_id)

        actor = f"agent:{source_id}"
        if reason is not None:
            self.audit.log(
                AuditAction.AGENT_AUTH_FAILURE,
                AuditOutcome.DENIED,
                actor=actor,
                resource=f"source:{source_id}",
                client_ip=client_ip,
                error_message=reason,
            )
            raise AgentAuthenticationError(reason)

        self.audit.log(
            AuditAction.AGENT_AUTH_SUCCESS,
            AuditOutcome.SUCCESS,
            actor=actor,
            resource=f"source:{source_id}",
            client_ip=client_ip,
        )
        return source

    def _record_failed_pair(
        self,
        source: IngestionSource,
        *,
        remote_path: str,
        original_path: str | None,
        file_name: str,
        size: int,
        checksum: str,
        message: str,
    ) -> _FailedPair:
        now = utcnow()
        with session_scope() as session:
            record = IngestionFile(
                source_id=source.id,
                remote_path=remote_path,
                original_path=original_path,
                file_name=file_name,
                file_size=size,
                last_modified=now,
                checksum_sha256=checksum,
                status=FileStatus.FAILED.value,
                error_message=message,
                processed_at=now,
            )
            session.add(record)
            session.flush()
            job = JobQueue(session).record_terminal(
                source_id=source.id,
                file_id=record.id,
                file_name=file_name,
                file_hash=checksum,
                status=JobStatus.FAILED,
                message=message,
            )
            SourceRepository(session).mark_scanned(source.id, last_error=message, agent_seen=True)
            return _FailedPair(file_id=record.id, job_id=job.id)

    def _reject(
        self,
        source: IngestionSource,
        kind: str,
        *,
        remote_path: str,
        original_path: str | None,
        file_name: str,
        size: int,
        checksum: str,
        message: str,
        severity: AlertSeverity = AlertSeverity.LOW,
    ) -> PushRejectedError:
        pair = self._record_failed_pair(
            source,
            remote_path=remote_path,
            original_path=original_path,
            file_name=file_name,
            size=size,
            checksum=checksum,
            message=message,
        )
        self.alerts.notify(
            agent_rejection_alert(
                kind,
                source_id=source.id,
                project_id=source.project_id,
                file_name=file_name,
                checksum=checksum,
                message=message,
                severity=severity,
                payload={"ingestionJobId": pair.job_id, "ingestionFileId": pair.file_id},
            )
        )
        record_agent_upload(kind)
        return PushRejectedError(
            message,
            source_id=source.id,
            ingestion_file_id=pair.file_id,
            ingestion_job_id=pair.job_id,
            file_hash=checksum,
        )

    def handle_upload(
        self,
        *,
        source_id: int,
        agent_key: str | None,
        staged_path: Path,
        file_name: str,
        original_path: str | None = None,
        size: int | None = None,
        client_ip: str | None = None,
        source: IngestionSource | None = None,
    ) -> AgentUploadResult:
        """Import one pushed file and return a definitive verdict.

        The staged upload is removed before returning, whatever the outcome.
        Callers that authenticated before staging pass the resolved ``source``.
        """

        try:
            return self._handle_upload(
                source_id=source_id,
                agent_key=agent_key,
                staged_path=staged_path,
                file_name=file_name,
                original_path=original_path,
                size=size,
                client_ip=client_ip,
                source=source,
            )
        finally:
            remove_quietly(staged_path)

    def _handle_upload(
        self,
        *,
        source_id: int,
        agent_key: str | None,
        staged_path: Path,
        file_name: str,
        original_path: str | None,
        size: int | None,
        client_ip: str | None,
        source: IngestionSource | None,
    ) -> AgentUploadResult:
        if source is None:
            source = self.authenticate(source_id, agent_key, client_ip=client_ip)

        file_size = size if size is not None else staged_path.stat().st_size
        limits = self.settings.uploads
        if file_size > limits.max_file_size_bytes:
            record_agent_upload("too_large")
            raise FileTooLargeError(limits.max_file_size_mb)

        chunk_size = self.settings.ingestion.checksum_chunk_bytes
        checksum = compute_sha256(staged_path, chunk_size=chunk_size)
        normalized_path = normalize_remote_path(original_path or "") or file_name
        rejection = {
            "remote_path": normalized_path,
            "original_path": normalized_path if original_path else None,
            "file_name": file_name,
            "size": file_size,
            "checksum": checksum,
        }

        extension = file_extension(file_name)
        if extension not in self.settings.ingestion.allowed_extensions:
            raise self._reject(
                source, "invalid_type", message=str(UnsupportedFormatError(extension)), **rejection
            )

        rule = parse_template_rule(source.template_rule)
        if rule is not None:
            try:
                header = get_parser(file_name, limits).read_header(staged_path)
            except FileRejectedError as exc:
                raise self._reject(
                    source,
                    "template_failed",
                    message=error_message(exc),
                    severity=AlertSeverity.MEDIUM,
                    **rejection,
                ) from exc
            verdict = evaluate_template(rule, file_name, header)
            if not verdict.passed:
                raise self._reject(
                    source,
                    "template_failed",
                    message=verdict.message or "",
                    severity=AlertSeverity.MEDIUM,
                    **rejection,
                )

        duplicate = self._skip_duplicate(source, file_name=file_name, checksum=checksum)
        if duplicate is not None:
            return duplicate

        return self._import(source, staged_path=staged_path, **rejection)

    def _skip_duplicate(
        self,
        source: IngestionSource,
        *,
        file_name: str,
        checksum: str,
    ) -> AgentUploadResult | None:
        with session_scope() as session:
            previous = DedupManager(session).find_imported_checksum(source.id, checksum)
            if previous is None:
                return None
            job = JobQueue(session).record_terminal(
                source_id=source.id,
                file_id=previous.id,
                file_name=file_name,
                file_hash=checksum,
                status=JobStatus.SKIPPED,
                message=DUPLICATE_JOB_MESSAGE,
            )
            SourceRepository(session).mark_scanned(source.id, last_error=None, agent_seen=True)
            result = AgentUploadResult(
                ok=True,
                duplicate=True,
                source_id=source.id,
                source_name=source.name,
                ingestion_job_id=job.id,
                ingestion_file_id=previous.id,
                file_hash=checksum,
                message=DUPLICATE_RESPONSE_MESSAGE,
            )

        record_agent_upload("duplicate")
        record_job_processed(source.kind, JobStatus.SKIPPED.value)
        logger.info(
            "Duplicate push skipped",
            extra={"source_id": source.id, "file_name": file_name, "status": "SKIPPED"},
        )
        return result

    def _import(
        self,
        source: IngestionSource,
        *,
        staged_path: Path,
        remote_path: str,
        original_path: str | None,
        file_name: str,
        size: int,
        checksum: str,
    ) -> AgentUploadResult:
        started = time.perf_counter()
        now = utcnow()
        with session_scope() as session:
            record = IngestionFile(
                source_id=source.id,
                remote_path=remote_path,
                original_path=original_path,
                file_name=file_name,
                file_size=size,
                last_modified=now,
                checksum_sha256=checksum,
                status=FileStatus.PROCESSING.value,
            )
            session.add(record)
            session.flush()
            job = IngestionJob(
                source_id=source.id,
                file_id=record.id,
                file_name=file_name,
                file_hash=checksum,
                status=JobStatus.PROCESSING.value,
                started_at=now,
            )
            session.add(job)
            session.flush()
            file_id, job_id = record.id, job.id

        try:
            result = self.processor.process(
                path=staged_path,
                file_name=file_name,
                project_id=source.project_id,
                storage_path=remote_path,
                template_rule=source.template_rule,
                source_id=source.id,
                source_kind=source.kind,
            )
        except Exception as exc:
            message = error_message(exc)
            with session_scope() as session:
                JobQueue(session).complete_failure(job_id, message)
                SourceRepository(session).touch_agent_seen(source.id)
            kind = "malware" if isinstance(exc, MalwareDetectedError) else "failed"
            self.alerts.notify(
                agent_rejection_alert(
                    kind,
                    source_id=source.id,
                    project_id=source.project_id,
                    file_name=file_name,
                    checksum=checksum,
                    message=message,
                    severity=AlertSeverity.MEDIUM,
                    payload={"ingestionJobId": job_id, "ingestionFileId": file_id},
                )
            )
            record_agent_upload(kind)
            record_job_processed(source.kind, JobStatus.FAILED.value)
            self._log_outcome(source, job_id, file_name, JobStatus.FAILED, started, error=message)
            if isinstance(exc, FileRejectedError):
                raise PushRejectedError(
                    message,
                    source_id=source.id,
                    ingestion_file_id=file_id,
                    ingestion_job_id=job_id,
                    file_hash=checksum,
                ) from exc
            raise

        with session_scope() as session:
            completed = JobQueue(session).complete_success(
                job_id,
                imported_file_id=result.imported_file_id,
                rows_imported=result.rows_imported,
            )
            SourceRepository(session).touch_agent_seen(source.id)
        if not completed:
            raise ClaimLostError(job_id)

        record_agent_upload("imported")
        record_job_processed(source.kind, JobStatus.SUCCESS.value)
        self._log_outcome(
            source, job_id, file_name, JobStatus.SUCCESS, started, rows=result.rows_imported
        )
        self.audit.log(
            AuditAction.FILE_PUSHED,
            AuditOutcome.SUCCESS,
            actor=f"agent:{source.id}",
            resource=f"imported_file:{result.imported_file_id}",
            ingestion_job_id=job_id,
            rows_imported=result.rows_imported,
            file_hash=checksum,
        )
        return AgentUploadResult(
            ok=True,
            source_id=source.id,
            source_name=source.name,
            ingestion_job_id=job_id,
            ingestion_file_id=file_id,
            imported_file_id=result.imported_file_id,
            rows_imported=result.rows_imported,
            file_hash=checksum,
        )

    def _log_outcome(
        self,
        source: IngestionSource,
        job_id: int,
        file_name: str,
        status: JobStatus,
        started: float,
        **extra: object,
    ) -> None:
        log_job_outcome(
            logger,
            job_id=job_id,
            source_id=source.id,
            source_kind=source.kind,
            file_name=file_name,
            status=status.value,
            duration_ms=int((time.perf_counter() - started) * 1000),
            **extra,
        )

    def handle_delete(
        self,
        *,
        source_id: int,
        agent_key: str | None,
        original_path: str,
        client_ip: str | None = None,
    ) -> AgentDeleteResult:
        """Mark a pushed path DELETED and purge every dataset imported from it."""

        remote_path = normalize_remote_path(original_path or "")
        if not remote_path:
            raise SourceUnavailableError("sourceId and originalPath are required.")

        source = self.authenticate(source_id, agent_key, client_ip=client_ip)
        with session_scope() as session:
            dedup = DedupManager(session)
            latest = dedup.latest_for_path(source.id, remote_path)
            file_name = (
                latest.file_name if latest else PurePosixPath(remote_path).name or "deleted_file"
            )
            result = dedup.mark_deleted(
                source_id=source.id,
                remote_path=remote_path,
                original_path=remote_path,
                file_name=file_name,
                reason=f"Deleted at source: {remote_path}",
            )
            SourceRepository(session).mark_scanned(source.id, last_error=None, agent_seen=True)

        self.audit.log(
            AuditAction.FILE_DELETED,
            AuditOutcome.SUCCESS,
            actor=f"agent:{source.id}",
            resource=f"source:{source.id}",
            client_ip=client_ip,
            remote_path=remote_path,
            ingestion_job_id=result.job_id,
            deleted_imported_count=result.deleted_imported_count,
        )
        if result.deleted_imported_count:
            self.audit.log(
                AuditAction.DATASET_PURGED,
                AuditOutcome.SUCCESS,
                actor=f"agent:{source.id}",
                resource=f"source:{source.id}",
                deleted_imported_count=result.deleted_imported_count,
            )
        return AgentDeleteResult(
            ok=True,
            source_id=source.id,
            source_name=source.name,
            remote_path=remote_path,
            ingestion_file_id=result.file_id,
            ingestion_job_id=result.job_id,
            deleted_imported_count=result.deleted_imported_count,
        )
