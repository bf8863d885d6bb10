"""Dataset read endpoint: columns, quality score and decoded rows."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...models.base import session_scope
from ...models.datasets import ImportedFile
from ...schemas.ingestion import DatasetView, QualityView
from ...storage.codec import build_row_codec
from ...storage.writer import DatasetReader
from ...utils.audit import AuditAction, AuditOutcome, get_audit_logger
from ..dependencies import require_api_key

router = APIRouter(prefix="/datasets", dependencies=[Depends(require_api_key)])


@router.get("/{file_id}")
def read_dataset(
    file_id: int,
    limit: int = Query(default=100, ge=1, le=5000),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    reader = DatasetReader(build_row_codec())
    with session_scope() as session:
        dataset = session.get(ImportedFile, file_id)
        if dataset is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Dataset not found.",
            )
        quality = None
        if dataset.quality is not None:
            quality = QualityView.model_validate(dataset.quality, from_attributes=True)
        view = DatasetView(
            id=dataset.id,
            name=dataset.name,
            file_type=dataset.file_type,
            project_id=dataset.project_id,
            row_count=dataset.row_count,
            columns=reader.columns(session, file_id),
            quality=quality,
            rows=reader.rows(session, file_id, offset=offset, limit=limit),
        )

    get_audit_logger().log(
        AuditAction.DATASET_READ,
        AuditOutcome.SUCCESS,
        actor="operator",
        actor_type="api_key",
        resource=f"imported_file:{file_id}",
        offset=offset,
        rows=len(view.rows),
    )
    return view.to_response()
