"""Tests for fingerprinted alert upserts and alert builders."""

from __future__ import annotations

from sqlalchemy import select

from tabular_ingestor.models.alerts import Alert, AlertSeverity, AlertStatus
from tabular_ingestor.models.base import session_scope
from tabular_ingestor.pipeline.alerts import (
    AlertNotice,
    DatabaseAlertNotifier,
    agent_rejection_alert,
    job_failure_alert,
    quality_alert,
)
from tabular_ingestor.pipeline.quality import compute_quality


def _alerts() -> list[Alert]:
    with session_scope() as session:
        return list(session.scalars(select(Alert).order_by(Alert.id)))


def _failure(message: str = "Missing header columns.") -> AlertNotice:
    return job_failure_alert(
        source_id=1,
        project_id=2,
        file_name="sales.csv",
        checksum="abc",
        fallback_key=10,
        message=message,
        job_id=5,
    )


class TestDatabaseAlertNotifier:
    def test_recurrence_updates_single_row(self) -> None:
        notifier = DatabaseAlertNotifier()

        notifier.notify(_failure())
        notifier.notify(_failure("Duplicate column names: a."))

        [alert] = _alerts()
        assert alert.fingerprint == "ingestion_failed|source:1|hash:abc"
        assert alert.occurrences == 2
        assert alert.message == "Duplicate column names: a."
        assert alert.severity == AlertSeverity.MEDIUM.value

    def test_recurrence_reopens_resolved_alert(self) -> None:
        notifier = DatabaseAlertNotifier()
        notifier.notify(_failure())
        with session_scope() as session:
            alert = session.scalars(select(Alert)).one()
            alert.status = AlertStatus.RESOLVED.value

        notifier.notify(_failure())

        [alert] = _alerts()
        assert alert.status == AlertStatus.OPEN.value
        assert alert.resolved_at is None


def test_job_failure_fingerprint_falls_back_without_checksum() -> None:
    notice = job_failure_alert(
        source_id=3,
        project_id=None,
        file_name="x.csv",
        checksum=None,
        fallback_key=77,
        message="boom",
    )

    assert notice.fingerprint == "ingestion_failed|source:3|hash:77"


def test_agent_rejection_kinds() -> None:
    common = {
        "source_id": 1,
        "project_id": None,
        "file_name": "a.csv",
        "checksum": "h",
        "message": "m",
    }

    malware = agent_rejection_alert("malware", **common)
    invalid = agent_rejection_alert("invalid_type", **common)
    template = agent_rejection_alert("template_failed", severity=AlertSeverity.MEDIUM, **common)

    assert malware.fingerprint == "ingestion_malware_detected|source:1|hash:h"
    assert malware.severity is AlertSeverity.HIGH
    assert invalid.fingerprint == "agent_ingestion_invalid_type|source:1|hash:h"
    assert invalid.severity is AlertSeverity.LOW
    assert template.title == "Template rule rejected: a.csv"
    assert template.severity is AlertSeverity.MEDIUM


def test_quality_alert_thresholds() -> None:
    clean = compute_quality(["a"], [{"a": "1"}, {"a": "2"}])
    poor = compute_quality(["a", "b"], [{"a": "", "b": "-"} for _ in range(4)])

    assert quality_alert(clean, imported_file_id=1, file_name="ok.csv", project_id=None) is None
    alert = quality_alert(poor, imported_file_id=2, file_name="poor.csv", project_id=None)
    assert alert is not None
    assert alert.severity is AlertSeverity.HIGH
    assert alert.payload["trust_level"] == poor.trust_level.value
