"""Cloud drive connector: folder listing, staged downloads and deletion reconciliation."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..exceptions import (
    ConfigurationError,
    DownloadFailedError,
    SourceUnavailableError,
    TransientSourceError,
)
from ..models.base import session_scope
from ..models.ingestion import FileStatus, IngestionFile, JobStatus
from ..models.sources import SourceKind
from ..monitoring.metrics import observe_scan_duration
from ..pipeline.alerts import download_failure_alert
from ..pipeline.dedup import DedupManager, DiscoveredFile
from ..pipeline.error_handling import error_message
from ..pipeline.queue import JobQueue
from ..schemas.ingestion import ConnectionCheck, ScanSummary
from ..utils.file_readers import remove_quietly, sha256_text
from ..utils.patterns import (
    file_extension,
    matches_pattern,
    normalize_extensions,
    normalize_list,
    sanitize_file_name,
)
from ..utils.timeutils import utcnow
from .base import SourceConnector
from .drive_client import DriveFile, DriveListing, GoogleDriveClient, ServiceAccountCredentials

REMOTE_PATH_PREFIX = "drive:"
MISSING_FOLDER_ERROR = "Missing connection_config.folderId"

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
    return default


class DriveSourceConfig(BaseModel):
    """Normalized ``connection_config`` of a cloud drive source."""

    model_config = ConfigDict(extra="ignore")

    folder_id: str = ""
    shared_drive_id: str | None = None
    include_shared_drives: bool = True
    max_files: int = Field(default=5000, ge=1)
    allowed_extensions: list[str] = Field(default_factory=list)
    service_account_json: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_connection_config(cls, raw: Any) -> Any:
        if not isinstance(raw, dict):
            return {}
        normalized: dict[str, Any] = {
            "folder_id": str(raw.get("folderId") or raw.get("driveFolderId") or "").strip(),
            "shared_drive_id": str(raw.get("sharedDriveId") or "").strip() or None,
            "include_shared_drives": _as_bool(raw.get("includeSharedDrives"), True),
            "allowed_extensions": normalize_list(
                raw.get("extensions") or raw.get("allowedExtensions")
            ),
            "service_account_json": str(raw.get("serviceAccountJson") or "").strip() or None,
        }
        try:
            if raw.get("maxFiles") is not None and int(raw["maxFiles"]) > 0:
                normalized["max_files"] = int(raw["maxFiles"])
        except (TypeError, ValueError):
            pass
        return normalized


def drive_remote_path(file_id: str) -> str:
    return f"{REMOTE_PATH_PREFIX}{file_id.strip()}"


def drive_checksum(file: DriveFile) -> str:
    """Provider md5 when present, else a hash of id, modification time and size."""

    if file.md5_checksum:
        return file.md5_checksum.lower()
    return sha256_text(f"{file.id}|{file.modified_time or ''}|{file.size or 0}")


class CloudDriveConnector(SourceConnector):
    """Downloads new or changed drive files into staging at scan time."""

    kind = SourceKind.CLOUD_DRIVE

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        defaults = self.settings.ingestion
        config = DriveSourceConfig.model_validate(self.source.connection_config or {})
        if not (self.source.connection_config or {}).get("maxFiles"):
            config.max_files = defaults.default_max_files
        config.allowed_extensions = normalize_extensions(
            config.allowed_extensions, defaults.allowed_extensions
        )
        self.config = config
        self._client: GoogleDriveClient | None = None

    @property
    def client(self) -> GoogleDriveClient:
        if self._client is None:
            credentials = ServiceAccountCredentials.resolve(
                self.settings.drive, override_json=self.config.service_account_json
            )
            self._client = GoogleDriveClient(
                credentials,
                self.settings.drive,
                token_cache=self.context.token_cache,
                transport=self.context.http_transport,
            )
        return self._client

    async def scan(self, *, retry_failed: bool = False) -> ScanSummary:
        summary = ScanSummary(source_id=self.source.id)
        if not self.config.folder_id:
            summary.errors.append(MISSING_FOLDER_ERROR)
            return self.finish_scan(summary)

        started = time.perf_counter()
        try:
            listing = await self.client.list_files(
                self.config.folder_id,
                max_files=self.config.max_files,
                shared_drive_id=self.config.shared_drive_id,
                include_shared_drives=self.config.include_shared_drives,
            )
            active_paths = await self._ingest_listing(listing, summary, retry_failed)
            if listing.truncated:
                self.logger.warning(
                    "Listing truncated at %d files; skipping deletion reconciliation",
                    self.config.max_files,
                )
            else:
                summary.deleted = self._reconcile(active_paths)
        except Exception as exc:
            self.logger.exception("Cloud drive scan failed", extra={"status": "error"})
            summary.errors.append(str(exc) or type(exc).__name__)
        finally:
            observe_scan_duration(self.kind.value, time.perf_counter() - started)

        return self.finish_scan(summary)

    async def check_connection(self) -> ConnectionCheck:
        """List at most one file of the folder to prove credentials and folder id."""

        if not self.config.folder_id:
            raise SourceUnavailableError(MISSING_FOLDER_ERROR)
        try:
            await self.client.list_files(
                self.config.folder_id,
                max_files=1,
                shared_drive_id=self.config.shared_drive_id,
                include_shared_drives=self.config.include_shared_drives,
            )
        except (ConfigurationError, TransientSourceError) as exc:
            self.logger.warning("Connection check failed: %s", exc, extra={"status": "error"})
            return self.connection_result(error_message(exc))
        return self.connection_result()

    async def _ingest_listing(
        self,
        listing: DriveListing,
        summary: ScanSummary,
        retry_failed: bool,
    ) -> set[str]:
        active_paths: set[str] = set()
        pattern = self.source.file_pattern or "*"
        for file in listing.files:
            if not file.id:
                summary.skipped += 1
                continue
            if file_extension(file.name) not in self.config.allowed_extensions:
                summary.skipped += 1
                continue
            if not matches_pattern(file.name, pattern):
                summary.skipped += 1
                continue

            remote_path = drive_remote_path(file.id)
            active_paths.add(remote_path)
            checksum = drive_checksum(file)
            registration = self.register_and_enqueue(
                DiscoveredFile(
                    source_id=self.source.id,
                    remote_path=remote_path,
                    file_name=file.name,
                    checksum=checksum,
                    file_size=file.size,
                    last_modified=file.modified_at,
                ),
                retry_failed=retry_failed,
                enqueue=False,
            )
            if not registration.created or registration.file_id is None:
                summary.skipped += 1
                continue
            if registration.updated:
                summary.updated += 1
            summary.discovered += 1

            destination = self.staging_dir / sanitize_file_name(
                f"gdrive-{self.source.id}-{file.id}-{int(time.time() * 1000)}-{file.name}"
            )
            try:
                await self.client.download(file.id, destination)
                with session_scope() as session:
                    record = session.get(IngestionFile, registration.file_id)
                    record.staging_path = str(destination)
                    record.error_message = None
                    session.flush()
                    JobQueue(session).enqueue(registration.file_id)
            except Exception as exc:
                # The registration is already committed; it must end FAILED, never NEW.
                summary.failed += 1
                remove_quietly(destination)
                self._record_download_failure(
                    registration.file_id, file, checksum, error_message(exc)
                )
                if not isinstance(exc, DownloadFailedError):
                    self.logger.exception(
                        "Staging drive file failed", extra={"file_name": file.name}
                    )
                continue
            summary.queued += 1
        return active_paths

    def _record_download_failure(
        self,
        file_id: int,
        file: DriveFile,
        checksum: str,
        message: str,
    ) -> None:
        with session_scope() as session:
            record = session.get(IngestionFile, file_id)
            record.status = FileStatus.FAILED.value
            record.error_message = message
            record.processed_at = utcnow()
            JobQueue(session).record_terminal(
                source_id=self.source.id,
                file_id=file_id,
                file_name=file.name,
                file_hash=checksum,
                status=JobStatus.FAILED,
                message=message,
            )
        self.logger.warning(
            "Download failed: %s", message, extra={"file_name": file.name, "status": "failed"}
        )
        self.context.alerts.notify(
            download_failure_alert(
                source_id=self.source.id,
                project_id=self.source.project_id,
                remote_id=file.id,
                file_name=file.name,
                message=message,
            )
        )

    def _reconcile(self, active_paths: set[str]) -> int:
        """Mark every known drive path missing from the listing as DELETED."""

        deleted = 0
        with session_scope() as session:
            dedup = DedupManager(session)
            for record in dedup.latest_by_prefix(self.source.id, REMOTE_PATH_PREFIX):
                if record.remote_path in active_paths:
                    continue
                if record.status == FileStatus.DELETED.value:
                    continue
                result = dedup.mark_deleted(
                    source_id=self.source.id,
                    remote_path=record.remote_path,
                    file_name=record.file_name,
                    reason=f"Deleted from source drive: {record.file_name}",
                )
                deleted += 1
                self.logger.info(
                    "Remote file removed; purged %d dataset(s)",
                    result.deleted_imported_count,
                    extra={"file_name": record.file_name, "status": JobStatus.DELETED.value},
                )
        return deleted
