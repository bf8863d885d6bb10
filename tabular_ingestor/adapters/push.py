"""Agent push sources: no server-side scan, files arrive over HTTP."""

from __future__ import annotations

from ..exceptions import SourceUnavailableError
from ..models.sources import SourceKind
from ..schemas.ingestion import ScanSummary
from .base import SourceConnector

MANUAL_SCAN_UNSUPPORTED = "Only local and cloud_drive sources support manual server-side scan."


class AgentPushConnector(SourceConnector):
    """Push channels are fed by remote agents; the coordinator never scans them."""

    kind = SourceKind.AGENT_PUSH
    supports_scan = False

    async def scan(self, *, retry_failed: bool = False) -> ScanSummary:
        raise SourceUnavailableError(MANUAL_SCAN_UNSUPPORTED)
