"""Operator endpoints for ingestion sources."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from ...pipeline.coordinator import IngestionCoordinator
from ...utils.audit import AuditAction, AuditOutcome, get_audit_logger
from ..dependencies import require_api_key

router = APIRouter(prefix="/sources", dependencies=[Depends(require_api_key)])


@router.post("/{source_id}/scan")
async def scan_source(
    source_id: int,
    request: Request,
    retry_failed: bool = Query(default=False, alias="retryFailed"),
) -> dict[str, Any]:
    """Scan one local or cloud drive source immediately, ignoring its poll interval."""

    audit = get_audit_logger()
    client_ip = request.client.host if request.client else None
    try:
        summary = await IngestionCoordinator().scan_source(source_id, retry_failed=retry_failed)
    except Exception as exc:
        audit.log(
            AuditAction.MANUAL_SCAN,
            AuditOutcome.FAILURE,
            actor="operator",
            actor_type="api_key",
            resource=f"source:{source_id}",
            client_ip=client_ip,
            error_message=str(exc) or exc.__class__.__name__,
        )
        raise

    audit.log(
        AuditAction.MANUAL_SCAN,
        AuditOutcome.SUCCESS,
        actor="operator",
        actor_type="api_key",
        resource=f"source:{source_id}",
        client_ip=client_ip,
        retry_failed=retry_failed,
        queued=summary.queued,
    )
    return {"ok": True, **summary.to_response()}


@router.post("/{source_id}/test")
async def check_source_connection(source_id: int) -> dict[str, Any]:
    """Check that a local or cloud drive source's location is reachable."""

    check = await IngestionCoordinator().check_source(source_id)
    return check.to_response()
