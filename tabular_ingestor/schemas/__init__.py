"""Pydantic schemas exchanged over HTTP, Celery and the CLI."""

from .ingestion import (
    AgentDeleteRequest,
    AgentDeleteResult,
    AgentUploadResult,
    CycleReport,
    DatasetView,
    JobOutcome,
    QualityView,
    ScanSummary,
)

__all__ = [
    "AgentDeleteRequest",
    "AgentDeleteResult",
    "AgentUploadResult",
    "CycleReport",
    "DatasetView",
    "JobOutcome",
    "QualityView",
    "ScanSummary",
]
