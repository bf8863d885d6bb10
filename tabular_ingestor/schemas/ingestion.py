"""Result payloads for scans, jobs, agent pushes and dataset reads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes with camelCase keys for the agent and admin HTTP contracts."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ScanSummary(CamelModel):
    """Counts produced by one scan of one source."""

    source_id: int
    discovered: int = 0
    queued: int = 0
    skipped: int = 0
    updated: int = 0
    failed: int = 0
    deleted: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def last_error(self) -> str | None:
        return " | ".join(self.errors) if self.errors else None


class JobOutcome(CamelModel):
    job_id: int
    source_id: int
    file_name: str | None = None
    status: str
    rows_imported: int | None = None
    imported_file_id: int | None = None
    error: str | None = None
    duration_ms: int = 0


class CycleReport(CamelModel):
    scans: list[ScanSummary] = Field(default_factory=list)
    jobs: list[JobOutcome] = Field(default_factory=list)


class AgentUploadResult(CamelModel):
    ok: bool
    duplicate: bool | None = None
    source_id: int
    source_name: str | None = None
    ingestion_job_id: int | None = None
    ingestion_file_id: int | None = None
    imported_file_id: int | None = None
    rows_imported: int | None = None
    file_hash: str | None = None
    message: str | None = None


class AgentDeleteRequest(CamelModel):
    source_id: int
    original_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("originalPath", "remotePath", "filePath", "original_path"),
    )
    agent_key: str | None = None


class AgentDeleteResult(CamelModel):
    ok: bool
    source_id: int
    source_name: str | None = None
    remote_path: str
    ingestion_file_id: int | None = None
    ingestion_job_id: int | None = None
    deleted_imported_count: int = 0


class QualityView(CamelModel):
    score: float
    trust_level: str
    missing_rate: float
    duplicate_rate: float
    invalid_rate: float
    schema_inconsistency_rate: float
    total_rows: int
    total_columns: int


class DatasetView(CamelModel):
    id: int
    name: str
    file_type: str
    project_id: int | None = None
    row_count: int
    columns: list[str]
    quality: QualityView | None = None
    rows: list[dict[str, Any]] = Field(default_factory=list)


class HistoryEntry(CamelModel):
    id: int
    source_id: int
    source_name: str | None = None
    source_kind: str | None = None
    ingestion_file_id: int | None = None
    file_name: str | None = None
    file_hash: str | None = None
    status: str
    rows_imported: int = 0
    error_message: str | None = None
    imported_file_id: int | None = None
    attempt: int = 1
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class HistoryPage(CamelModel):
    items: list[HistoryEntry] = Field(default_factory=list)
    total: int = 0


class HistoryPurgeResult(CamelModel):
    ok: bool = True
    mode: str
    source_id: int | None = None
    deleted_files: int = 0
    deleted_jobs: int = 0


class ConnectionCheck(CamelModel):
    """Outcome of checking that a source's location is reachable."""

    ok: bool
    source_id: int
    source_kind: str
    message: str | None = None
