"""Fingerprinted alert upserts for ingestion failures and quality warnings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import select

from ..models.alerts import Alert, AlertSeverity, AlertStatus
from ..models.base import session_scope
from ..monitoring.metrics import record_alert
from ..utils.logging import setup_logger
from ..utils.timeutils import utcnow
from .quality import QualityReport, TrustLevel

logger = setup_logger(__name__)

QUALITY_WARNING_SCORE = 70.0
QUALITY_HIGH_SEVERITY_SCORE = 50.0
QUALITY_INVALID_WARNING = 0.15
QUALITY_INVALID_HIGH = 0.3
QUALITY_SCHEMA_WARNING = 0.2


@dataclass(slots=True)
class AlertNotice:
    """One alert occurrence; the fingerprint collapses recurrences."""

    fingerprint: str
    alert_type: str
    severity: AlertSeverity
    title: str
    message: str
    source_id: int | None = None
    project_id: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class AlertNotifier(Protocol):
    def notify(self, alert: AlertNotice) -> None: ...


class DatabaseAlertNotifier:
    """Upserts alerts into the ``alerts`` table by fingerprint.

    A recurrence of a resolved alert reopens it.
    """

    def notify(self, alert: AlertNotice) -> None:
        now = utcnow()
        with session_scope() as session:
            existing = session.scalars(
                select(Alert).where(Alert.fingerprint == alert.fingerprint)
            ).first()
            if existing is None:
                session.add(
                    Alert(
                        fingerprint=alert.fingerprint,
                        alert_type=alert.alert_type,
                        severity=alert.severity.value,
                        status=AlertStatus.OPEN.value,
                        title=alert.title,
                        message=alert.message,
                        source_id=alert.source_id,
                        project_id=alert.project_id,
                        payload=alert.payload or None,
                        first_seen_at=now,
                        last_seen_at=now,
                    )
                )
            else:
                existing.severity = alert.severity.value
                existing.title = alert.title
                existing.message = alert.message
                existing.payload = alert.payload or existing.payload
                existing.occurrences += 1
                existing.last_seen_at = now
                if existing.status == AlertStatus.RESOLVED.value:
                    existing.status = AlertStatus.OPEN.value
                    existing.resolved_at = None

        record_alert(alert.alert_type)
        logger.warning(
            "Alert %s: %s",
            alert.fingerprint,
            alert.message,
            extra={"source_id": alert.source_id or "-", "status": alert.severity.value},
        )


def job_failure_alert(
    *,
    source_id: int,
    project_id: int | None,
    file_name: str,
    checksum: str | None,
    fallback_key: int | str,
    message: str,
    job_id: int | None = None,
) -> AlertNotice:
    return AlertNotice(
        fingerprint=f"ingestion_failed|source:{source_id}|hash:{checksum or fallback_key}",
        alert_type="ingestion_failed",
        severity=AlertSeverity.MEDIUM,
        title=f"Ingestion failed: {file_name}",
        message=message,
        source_id=source_id,
        project_id=project_id,
        payload={"ingestionJobId": job_id, "fileName": file_name, "fileHash": checksum},
    )


def download_failure_alert(
    *,
    source_id: int,
    project_id: int | None,
    remote_id: str,
    file_name: str,
    message: str,
) -> AlertNotice:
    return AlertNotice(
        fingerprint=f"ingestion_download_failed|source:{source_id}|file:{remote_id}",
        alert_type="ingestion_failed",
        severity=AlertSeverity.MEDIUM,
        title=f"Download failed: {file_name}",
        message=message,
        source_id=source_id,
        project_id=project_id,
        payload={"remoteId": remote_id, "fileName": file_name},
    )


def agent_rejection_alert(
    kind: str,
    *,
    source_id: int,
    project_id: int | None,
    file_name: str,
    checksum: str,
    message: str,
    severity: AlertSeverity = AlertSeverity.LOW,
    payload: dict[str, Any] | None = None,
) -> AlertNotice:
    """``kind`` is one of ``invalid_type``, ``template_failed``, ``failed`` or ``malware``."""

    if kind == "malware":
        fingerprint = f"ingestion_malware_detected|source:{source_id}|hash:{checksum}"
        severity = AlertSeverity.HIGH
        title = f"Malware blocked: {file_name}"
    else:
        fingerprint = f"agent_ingestion_{kind}|source:{source_id}|hash:{checksum}"
        title = {
            "invalid_type": f"Invalid file type blocked: {file_name}",
            "template_failed": f"Template rule rejected: {file_name}",
        }.get(kind, f"Agent ingestion failed: {file_name}")
    return AlertNotice(
        fingerprint=fingerprint,
        alert_type="ingestion_failed",
        severity=severity,
        title=title,
        message=message,
        source_id=source_id,
        project_id=project_id,
        payload={"fileName": file_name, "fileHash": checksum, **(payload or {})},
    )


def quality_alert(
    report: QualityReport,
    *,
    imported_file_id: int,
    file_name: str,
    project_id: int | None,
    source_id: int | None = None,
) -> AlertNotice | None:
    """Return a data-quality warning when the report crosses a threshold, else None."""

    flagged = (
        report.score < QUALITY_WARNING_SCORE
        or report.trust_level is TrustLevel.LOW
        or report.invalid_rate >= QUALITY_INVALID_WARNING
        or report.schema_inconsistency_rate >= QUALITY_SCHEMA_WARNING
    )
    if not flagged:
        return None

    high = report.score < QUALITY_HIGH_SEVERITY_SCORE or report.invalid_rate >= QUALITY_INVALID_HIGH
    return AlertNotice(
        fingerprint=f"data_quality|file:{imported_file_id}",
        alert_type="data_quality",
        severity=AlertSeverity.HIGH if high else AlertSeverity.MEDIUM,
        title=f"Data quality warning: {file_name}",
        message=(
            f"Quality score {report.score:.1f} ({report.trust_level.value}); "
            f"missing {report.missing_rate:.1%}, duplicate {report.duplicate_rate:.1%}, "
            f"invalid {report.invalid_rate:.1%}, schema {report.schema_inconsistency_rate:.1%}."
        ),
        source_id=source_id,
        project_id=project_id,
        payload={"importedFileId": imported_file_id, **report.to_dict()},
    )
