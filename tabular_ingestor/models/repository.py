"""Repository helpers for ingestion sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..exceptions import SourceNotFoundError
from ..utils.agent_keys import agent_key_hint, generate_agent_key, hash_agent_key
from ..utils.timeutils import utcnow
from .sources import IngestionSource, SourceKind


@dataclass(slots=True)
class SourceCreate:
    """Value object capturing required fields to persist an ingestion source."""

    name: str
    kind: SourceKind
    project_id: int | None = None
    connection_config: dict[str, Any] = field(default_factory=dict)
    file_pattern: str | None = None
    template_rule: str | None = None
    poll_interval_minutes: int = 5
    enabled: bool = True


class SourceRepository:
    """Data access helpers for :class:`IngestionSource`."""

    def __init__(self, session: Session):
        self._session = session

    def create(self, data: SourceCreate) -> IngestionSource:
        source = IngestionSource(
            name=data.name,
            kind=SourceKind(data.kind).value,
            project_id=data.project_id,
            connection_config=dict(data.connection_config),
            file_pattern=data.file_pattern,
            template_rule=data.template_rule,
            poll_interval_minutes=data.poll_interval_minutes,
            enabled=data.enabled,
        )
        self._session.add(source)
        self._session.flush()
        return source

    def get(self, source_id: int) -> IngestionSource | None:
        return self._session.get(IngestionSource, source_id)

    def require(self, source_id: int) -> IngestionSource:
        source = self.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    def list_enabled(self) -> list[IngestionSource]:
        return list(
            self._session.scalars(
                select(IngestionSource)
                .where(IngestionSource.enabled.is_(True))
                .order_by(IngestionSource.id)
            )
        )

    def issue_agent_key(self, source_id: int) -> str:
        """Store the hash and hint of a fresh agent secret and return the raw secret once."""

        source = self.require(source_id)
        raw_key = generate_agent_key()
        source.agent_key_hash = hash_agent_key(raw_key)
        source.agent_key_hint = agent_key_hint(raw_key)
        self._session.flush()
        return raw_key

    def mark_scanned(
        self,
        source_id: int,
        *,
        last_error: str | None,
        scanned_at: datetime | None = None,
        agent_seen: bool = False,
    ) -> None:
        values: dict[str, Any] = {
            "last_scan_at": scanned_at or utcnow(),
            "last_error": last_error,
        }
        if agent_seen:
            values["last_agent_seen_at"] = values["last_scan_at"]
        self._session.execute(
            update(IngestionSource).where(IngestionSource.id == source_id).values(**values)
        )

    def record_error(self, source_id: int, message: str | None) -> None:
        self._session.execute(
            update(IngestionSource)
            .where(IngestionSource.id == source_id)
            .values(last_error=message)
        )

    def touch_agent_seen(self, source_id: int) -> None:
        self._session.execute(
            update(IngestionSource)
            .where(IngestionSource.id == source_id)
            .values(last_agent_seen_at=utcnow())
        )
