"""Operator endpoints for the ingestion job history."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ...models.base import session_scope
from ...pipeline.history import MAX_HISTORY_LIMIT, IngestionHistory, PurgeMode
from ...schemas.ingestion import HistoryPurgeResult
from ...utils.audit import AuditAction, AuditOutcome, get_audit_logger
from ..dependencies import require_api_key

INVALID_MODE_MESSAGE = "mode must be 'deleted' or 'all'."

router = APIRouter(prefix="/ingestion", dependencies=[Depends(require_api_key)])


@router.get("/history")
def list_history(
    limit: int = Query(default=200, ge=1, le=MAX_HISTORY_LIMIT),
    source_id: int | None = Query(default=None, alias="sourceId", ge=1),
) -> dict[str, Any]:
    """Most recent ingestion jobs, newest first."""

    with session_scope() as session:
        page = IngestionHistory(session).list_entries(limit=limit, source_id=source_id)
    return page.to_response()


@router.delete("/history")
def clear_history(
    request: Request,
    mode: str = Query(default=PurgeMode.DELETED.value),
    source_id: int | None = Query(default=None, alias="sourceId", ge=1),
) -> dict[str, Any]:
    """Prune finished history rows; ``mode`` is ``deleted`` (default) or ``all``."""

    try:
        purge_mode = PurgeMode(mode.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_MODE_MESSAGE
        ) from None

    with session_scope() as session:
        counts = IngestionHistory(session).clear(purge_mode, source_id=source_id)

    get_audit_logger().log(
        AuditAction.HISTORY_CLEARED,
        AuditOutcome.SUCCESS,
        actor="operator",
        actor_type="api_key",
        resource=f"source:{source_id}" if source_id else "ingestion_history",
        client_ip=request.client.host if request.client else None,
        mode=purge_mode.value,
        deleted_files=counts.deleted_files,
        deleted_jobs=counts.deleted_jobs,
    )
    result = HistoryPurgeResult(
        mode=purge_mode.value,
        source_id=source_id,
        deleted_files=counts.deleted_files,
        deleted_jobs=counts.deleted_jobs,
    )
    return result.to_response()
