"""Configured ingestion origins."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SourceKind(str, Enum):
    """Closed set of source kinds; each maps to one connector implementation."""

    LOCAL = "local"
    CLOUD_DRIVE = "cloud_drive"
    AGENT_PUSH = "agent_push"


class IngestionSource(Base):
    """A local directory set, a drive folder, or an agent push channel."""

    __tablename__ = "ingestion_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    connection_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    file_pattern: Mapped[str | None] = mapped_column(String(255), nullable=True)
    template_rule: Mapped[str | None] = mapped_column(Text, nullable=True)
    poll_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    agent_key_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    agent_key_hint: Mapped[str | None] = mapped_column(String(16), nullable=True)
    last_agent_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_scan_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def source_kind(self) -> SourceKind:
        return SourceKind(self.kind)

    def __repr__(self) -> str:
        return f"<IngestionSource id={self.id} kind={self.kind} name={self.name!r}>"
