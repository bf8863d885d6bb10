"""Base connector abstract class for all ingestion source kinds."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, TypeVar

import httpx

from ..exceptions import SourceUnavailableError, TransientSourceError
from ..models.base import session_scope
from ..models.repository import SourceRepository
from ..models.sources import IngestionSource, SourceKind
from ..monitoring.metrics import record_file_discovered
from ..pipeline.alerts import AlertNotifier, DatabaseAlertNotifier
from ..pipeline.dedup import DedupManager, DiscoveredFile, Registration
from ..pipeline.queue import ClaimedJob, JobQueue
from ..schemas.ingestion import ConnectionCheck, ScanSummary
from ..utils.config import GlobalSettings, get_settings
from ..utils.file_readers import remove_quietly
from ..utils.logging import StructuredLoggerAdapter, setup_logger
from ..utils.timeutils import utcnow
from .token_cache import TokenCache, get_default_token_cache

T = TypeVar("T")

CONNECTION_CHECK_UNSUPPORTED = "Only local and cloud_drive sources support connection checks."


@dataclass(slots=True)
class ConnectorContext:
    """Collaborators shared by every connector built during one cycle."""

    settings: GlobalSettings = field(default_factory=get_settings)
    alerts: AlertNotifier = field(default_factory=DatabaseAlertNotifier)
    token_cache: TokenCache = field(default_factory=get_default_token_cache)
    http_transport: httpx.AsyncBaseTransport | None = None
    clock: Callable[[], datetime] = utcnow


class SourceConnector(ABC):
    """
    One implementation per :class:`SourceKind`.

    A connector is selected once when its source is loaded. It knows how to
    discover files (``scan``) and how to put a queued file's bytes on local
    disk for processing (``stage``/``release``).
    """

    kind: ClassVar[SourceKind]
    supports_scan: ClassVar[bool] = True

    def __init__(self, source: IngestionSource, context: ConnectorContext | None = None):
        self.source = source
        self.context = context or ConnectorContext()
        self.settings = self.context.settings
        self.logger: StructuredLoggerAdapter = setup_logger(
            f"{__name__}.{type(self).__name__}",
            context={"source_id": source.id, "source_kind": self.kind.value},
        )

    async def _run_in_thread(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute a blocking function in a thread to avoid blocking the event loop."""

        return await asyncio.to_thread(func, *args, **kwargs)

    @property
    def staging_dir(self) -> Path:
        return self.settings.ingestion.staging_dir

    @abstractmethod
    async def scan(self, *, retry_failed: bool = False) -> ScanSummary:
        """Discover files, register changed ones and enqueue them.

        Implementations record ``last_scan_at``/``last_error`` on the source and
        never raise for per-item failures.
        """

    async def check_connection(self) -> ConnectionCheck:
        """Verify the configured location is reachable without registering anything."""

        raise SourceUnavailableError(CONNECTION_CHECK_UNSUPPORTED)

    def connection_result(self, problem: str | None = None) -> ConnectionCheck:
        return ConnectionCheck(
            ok=problem is None,
            source_id=self.source.id,
            source_kind=self.kind.value,
            message=problem,
        )

    async def stage(self, job: ClaimedJob) -> Path:
        """Return a local path holding the job's bytes."""

        staged = Path(job.staging_path) if job.staging_path else None
        if staged is None or not staged.is_file():
            raise TransientSourceError(
                f"Staging file not found for source kind '{self.kind.value}'"
            )
        return staged

    async def release(self, job: ClaimedJob, path: Path | None) -> None:
        """Drop staged bytes once the job reached a terminal state."""

        remove_quietly(path)

    def register_and_enqueue(
        self,
        discovered: DiscoveredFile,
        *,
        retry_failed: bool = False,
        enqueue: bool = True,
    ) -> Registration:
        """Dedup-check a discovery and queue it in the same transaction when new or changed."""

        with session_scope() as session:
            registration = DedupManager(session).register(discovered, retry_failed=retry_failed)
            if registration.created and enqueue and registration.file_id is not None:
                JobQueue(session).enqueue(registration.file_id)

        if registration.updated:
            outcome = "changed"
        elif registration.created:
            outcome = "new"
        else:
            outcome = "unchanged"
        record_file_discovered(self.kind.value, outcome)
        return registration

    def finish_scan(self, summary: ScanSummary) -> ScanSummary:
        with session_scope() as session:
            SourceRepository(session).mark_scanned(
                self.source.id,
                last_error=summary.last_error,
                scanned_at=self.context.clock(),
            )
        return summary
