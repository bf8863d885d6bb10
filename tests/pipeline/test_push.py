"""Tests for the synchronous agent push service."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy import select

from tabular_ingestor.exceptions import (
    AgentAuthenticationError,
    FileTooLargeError,
    MalwareDetectedError,
    PushRejectedError,
    SourceUnavailableError,
)
from tabular_ingestor.models.alerts import AlertSeverity
from tabular_ingestor.models.base import session_scope
from tabular_ingestor.models.datasets import ImportedFile
from tabular_ingestor.models.ingestion import FileStatus, IngestionFile, IngestionJob, JobStatus
from tabular_ingestor.models.sources import IngestionSource, SourceKind
from tabular_ingestor.pipeline.alerts import AlertNotice
from tabular_ingestor.pipeline.push import (
    DUPLICATE_JOB_MESSAGE,
    DUPLICATE_RESPONSE_MESSAGE,
    INVALID_AGENT_KEY,
    MISSING_AGENT_KEY,
    SOURCE_INACTIVE,
    WRONG_SOURCE_KIND,
    AgentPushService,
)
from tabular_ingestor.utils.config import get_settings


class RecordingNotifier:
    def __init__(self) -> None:
        self.alerts: list[AlertNotice] = []

    def notify(self, alert: AlertNotice) -> None:
        self.alerts.append(alert)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(notifier: RecordingNotifier) -> AgentPushService:
    return AgentPushService(get_settings(), alerts=notifier)


@pytest.fixture
def staged(tmp_path: Path, write_file: Callable[..., Path]) -> Callable[..., Path]:
    def _stage(content: str, name: str = "upload.bin") -> Path:
        return write_file(tmp_path / "incoming" / name, content)

    return _stage


def _job(job_id: int) -> IngestionJob:
    with session_scope() as session:
        return session.get(IngestionJob, job_id)


def _file(file_id: int) -> IngestionFile:
    with session_scope() as session:
        return session.get(IngestionFile, file_id)


class TestAuthentication:
    def test_missing_and_invalid_keys(
        self, service: AgentPushService, push_source: Callable[..., tuple[int, str]]
    ) -> None:
        source_id, _ = push_source()

        with pytest.raises(AgentAuthenticationError, match=MISSING_AGENT_KEY):
            service.authenticate(source_id, None)
        with pytest.raises(AgentAuthenticationError, match=INVALID_AGENT_KEY):
            service.authenticate(source_id, "not-the-key")

    def test_valid_key_records_agent_contact(
        self, service: AgentPushService, push_source: Callable[..., tuple[int, str]]
    ) -> None:
        source_id, key = push_source()

        service.authenticate(source_id, f"  {key} ")

        with session_scope() as session:
            assert session.get(IngestionSource, source_id).last_agent_seen_at is not None

    def test_disabled_and_wrong_kind_sources(
        self,
        service: AgentPushService,
        push_source: Callable[..., tuple[int, str]],
        make_source: Callable[..., int],
    ) -> None:
        disabled_id, key = push_source(enabled=False)
        local_id = make_source(SourceKind.LOCAL)

        with pytest.raises(SourceUnavailableError, match=SOURCE_INACTIVE):
            service.authenticate(disabled_id, key)
        with pytest.raises(SourceUnavailableError, match=WRONG_SOURCE_KIND):
            service.authenticate(local_id, key)


class TestHandleUpload:
    def test_import_and_duplicate(
        self,
        service: AgentPushService,
        push_source: Callable[..., tuple[int, str]],
        staged: Callable[..., Path],
        sales_csv: str,
    ) -> None:
        source_id, key = push_source(project_id=4)
        first_path = staged(sales_csv)

        first = service.handle_upload(
            source_id=source_id,
            agent_key=key,
            staged_path=first_path,
            file_name="sales.csv",
            original_path=".\\reports\\sales.csv",
        )
        second = service.handle_upload(
            source_id=source_id,
            agent_key=key,
            staged_path=staged(sales_csv),
            file_name="sales.csv",
        )

        assert first.ok and not first.duplicate
        assert first.rows_imported == 3
        assert not first_path.exists()
        record = _file(first.ingestion_file_id)
        assert record.status == FileStatus.SUCCESS.value
        assert record.remote_path == "reports/sales.csv"
        assert _job(first.ingestion_job_id).status == JobStatus.SUCCESS.value
        with session_scope() as session:
            assert session.get(ImportedFile, first.imported_file_id).project_id == 4

        assert second.duplicate is True
        assert second.message == DUPLICATE_RESPONSE_MESSAGE
        assert second.ingestion_file_id == first.ingestion_file_id
        assert second.imported_file_id is None
        duplicate_job = _job(second.ingestion_job_id)
        assert duplicate_job.status == JobStatus.SKIPPED.value
        assert duplicate_job.error_message == DUPLICATE_JOB_MESSAGE

    def test_staged_file_removed_on_auth_failure(
        self,
        service: AgentPushService,
        push_source: Callable[..., tuple[int, str]],
        staged: Callable[..., Path],
        sales_csv: str,
    ) -> None:
        source_id, _ = push_source()
        path = staged(sales_csv)

        with pytest.raises(AgentAuthenticationError):
            service.handle_upload(
                source_id=source_id, agent_key="wrong", staged_path=path, file_name="sales.csv"
            )

        assert not path.exists()

    def test_invalid_type_is_recorded(
        self,
        service: AgentPushService,
        notifier: RecordingNotifier,
        push_source: Callable[..., tuple[int, str]],
        staged: Callable[..., Path],
    ) -> None:
        source_id, key = push_source()

        with pytest.raises(PushRejectedError, match="Unsupported file type") as excinfo:
            service.handle_upload(
                source_id=source_id,
                agent_key=key,
                staged_path=staged("%PDF"),
                file_name="report.pdf",
            )

        record = _file(excinfo.value.ingestion_file_id)
        assert record.status == FileStatus.FAILED.value
        assert record.checksum_sha256 == excinfo.value.file_hash
        assert _job(excinfo.value.ingestion_job_id).status == JobStatus.FAILED.value
        [alert] = notifier.alerts
        assert alert.fingerprint.startswith(f"agent_ingestion_invalid_type|source:{source_id}|")
        assert alert.severity is AlertSeverity.LOW
        with session_scope() as session:
            assert session.get(IngestionSource, source_id).last_error == str(excinfo.value)

    def test_template_rejection_names_missing_column(
        self,
        service: AgentPushService,
        notifier: RecordingNotifier,
        push_source: Callable[..., tuple[int, str]],
        staged: Callable[..., Path],
    ) -> None:
        source_id, key = push_source(template_rule='{"requiredColumns": ["region", "revenue"]}')

        with pytest.raises(PushRejectedError, match="revenue"):
            service.handle_upload(
                source_id=source_id,
                agent_key=key,
                staged_path=staged("region,units\nnorth,4\n"),
                file_name="sales.csv",
            )

        [alert] = notifier.alerts
        assert alert.title == "Template rule rejected: sales.csv"
        assert alert.severity is AlertSeverity.MEDIUM
        with session_scope() as session:
            assert session.scalars(select(ImportedFile)).first() is None

    def test_oversized_upload(
        self,
        service: AgentPushService,
        push_source: Callable[..., tuple[int, str]],
        staged: Callable[..., Path],
        sales_csv: str,
    ) -> None:
        source_id, key = push_source()
        too_big = get_settings().uploads.max_file_size_bytes + 1

        with pytest.raises(FileTooLargeError):
            service.handle_upload(
                source_id=source_id,
                agent_key=key,
                staged_path=staged(sales_csv),
                file_name="sales.csv",
                size=too_big,
            )

    def test_processing_failure_marks_job_failed(
        self,
        service: AgentPushService,
        push_source: Callable[..., tuple[int, str]],
        staged: Callable[..., Path],
    ) -> None:
        source_id, key = push_source()

        with pytest.raises(PushRejectedError) as excinfo:
            service.handle_upload(
                source_id=source_id, agent_key=key, staged_path=staged(""), file_name="empty.csv"
            )

        assert _job(excinfo.value.ingestion_job_id).status == JobStatus.FAILED.value
        assert _file(excinfo.value.ingestion_file_id).status == FileStatus.FAILED.value

    def test_malware_raises_high_severity_alert(
        self,
        service: AgentPushService,
        notifier: RecordingNotifier,
        push_source: Callable[..., tuple[int, str]],
        staged: Callable[..., Path],
        sales_csv: str,
    ) -> None:
        source_id, key = push_source()

        with patch(
            "tabular_ingestor.pipeline.processor.scan_file",
            side_effect=MalwareDetectedError("Malware detected"),
        ):
            with pytest.raises(PushRejectedError, match="Malware"):
                service.handle_upload(
                    source_id=source_id,
                    agent_key=key,
                    staged_path=staged(sales_csv),
                    file_name="sales.csv",
                )

        [alert] = notifier.alerts
        assert alert.fingerprint.startswith("ingestion_malware_detected|")
        assert alert.severity is AlertSeverity.HIGH


class TestHandleDelete:
    def test_delete_purges_imported_dataset(
        self,
        service: AgentPushService,
        push_source: Callable[..., tuple[int, str]],
        staged: Callable[..., Path],
        sales_csv: str,
    ) -> None:
        source_id, key = push_source()
        uploaded = service.handle_upload(
            source_id=source_id,
            agent_key=key,
            staged_path=staged(sales_csv),
            file_name="sales.csv",
            original_path="reports/sales.csv",
        )

        result = service.handle_delete(
            source_id=source_id, agent_key=key, original_path="/reports//sales.csv"
        )

        assert result.remote_path == "reports/sales.csv"
        assert result.deleted_imported_count == 1
        assert result.ingestion_file_id == uploaded.ingestion_file_id
        assert _file(uploaded.ingestion_file_id).status == FileStatus.DELETED.value
        assert _job(result.ingestion_job_id).status == JobStatus.DELETED.value
        with session_scope() as session:
            assert session.get(ImportedFile, uploaded.imported_file_id) is None

    def test_unknown_path_is_recorded(
        self, service: AgentPushService, push_source: Callable[..., tuple[int, str]]
    ) -> None:
        source_id, key = push_source()

        result = service.handle_delete(
            source_id=source_id, agent_key=key, original_path="archive/old.xlsx"
        )

        assert result.deleted_imported_count == 0
        assert _file(result.ingestion_file_id).file_name == "old.xlsx"

    def test_blank_path_is_rejected(
        self, service: AgentPushService, push_source: Callable[..., tuple[int, str]]
    ) -> None:
        source_id, key = push_source()

        with pytest.raises(SourceUnavailableError, match="originalPath"):
            service.handle_delete(source_id=source_id, agent_key=key, original_path="  ")
