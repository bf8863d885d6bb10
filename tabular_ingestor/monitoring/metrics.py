"""Prometheus metrics definitions for tabular_ingestor."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

FILES_DISCOVERED = Counter(
    "ingestion_files_discovered_total",
    "Files seen by scanners, by source kind and outcome.",
    labelnames=("source_kind", "outcome"),
)

JOBS_PROCESSED = Counter(
    "ingestion_jobs_processed_total",
    "Ingestion jobs finished, by terminal status.",
    labelnames=("source_kind", "status"),
)

JOB_CLAIMS_LOST = Counter(
    "ingestion_job_claims_lost_total",
    "Claim attempts that lost the race to another worker.",
)

ROWS_IMPORTED = Counter(
    "ingestion_rows_imported_total",
    "Rows written to imported datasets.",
    labelnames=("source_kind",),
)

AGENT_UPLOADS = Counter(
    "ingestion_agent_uploads_total",
    "Agent push requests, by outcome.",
    labelnames=("outcome",),
)

ALERTS_RAISED = Counter(
    "ingestion_alerts_raised_total",
    "Alerts upserted, by alert type.",
    labelnames=("alert_type",),
)

PROCESSING_DURATION = Histogram(
    "ingestion_processing_duration_seconds",
    "Time spent parsing, scoring and writing one file.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120),
)

SCAN_DURATION = Histogram(
    "ingestion_scan_duration_seconds",
    "Time spent scanning one source.",
    labelnames=("source_kind",),
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 300),
)

QUALITY_SCORE = Histogram(
    "ingestion_quality_score",
    "Distribution of computed quality scores.",
    buckets=(10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
)


def record_file_discovered(source_kind: str, outcome: str) -> None:
    FILES_DISCOVERED.labels(source_kind=source_kind, outcome=outcome).inc()


def record_job_processed(source_kind: str, status: str) -> None:
    JOBS_PROCESSED.labels(source_kind=source_kind, status=status).inc()


def record_claim_lost() -> None:
    JOB_CLAIMS_LOST.inc()


def record_rows_imported(source_kind: str, rows: int) -> None:
    ROWS_IMPORTED.labels(source_kind=source_kind).inc(max(rows, 0))


def record_agent_upload(outcome: str) -> None:
    AGENT_UPLOADS.labels(outcome=outcome).inc()


def record_alert(alert_type: str) -> None:
    ALERTS_RAISED.labels(alert_type=alert_type).inc()


def observe_processing_duration(duration_seconds: float) -> None:
    """Record the parse/score/write duration in seconds."""

    PROCESSING_DURATION.observe(max(duration_seconds, 0.0))


def observe_scan_duration(source_kind: str, duration_seconds: float) -> None:
    SCAN_DURATION.labels(source_kind=source_kind).observe(max(duration_seconds, 0.0))


def observe_quality_score(score: float) -> None:
    QUALITY_SCORE.observe(score)
