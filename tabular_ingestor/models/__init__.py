"""Persistence models for tabular_ingestor."""

from .alerts import Alert, AlertSeverity, AlertStatus
from .base import Base, get_engine, get_session, reset_engine, session_scope
from .datasets import FileColumn, FileRow, ImportedFile, QualityScore
from .ingestion import FileStatus, IngestionFile, IngestionJob, JobStatus
from .repository import SourceCreate, SourceRepository
from .sources import IngestionSource, SourceKind

__all__ = [
    "Alert",
    "AlertSeverity",
    "AlertStatus",
    "Base",
    "FileColumn",
    "FileRow",
    "FileStatus",
    "ImportedFile",
    "IngestionFile",
    "IngestionJob",
    "IngestionSource",
    "JobStatus",
    "QualityScore",
    "SourceCreate",
    "SourceKind",
    "SourceRepository",
    "get_engine",
    "get_session",
    "reset_engine",
    "session_scope",
]
