"""Agent ingress: synchronous file pushes and deletion notices from remote watchers."""

from __future__ import annotations

import uuid
from pathlib import Path, PurePath
from typing import Any, BinaryIO

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from ...exceptions import FileTooLargeError
from ...monitoring.metrics import record_agent_upload
from ...pipeline.push import AgentPushService
from ...schemas.ingestion import AgentDeleteRequest
from ...utils.agent_keys import extract_agent_key
from ...utils.config import get_settings
from ...utils.file_readers import remove_quietly
from ...utils.logging import setup_logger
from ...utils.patterns import sanitize_file_name
from ..dependencies import AgentCredentials

logger = setup_logger(__name__, context={"source_kind": "agent_push"})
router = APIRouter(prefix="/agent")

COPY_CHUNK_BYTES = 1024 * 1024


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _stage_upload(stream: BinaryIO, destination: Path, *, max_bytes: int, max_mb: int) -> int:
    """Copy the upload to staging, aborting as soon as it exceeds ``max_bytes``."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    try:
        with open(destination, "wb") as handle:
            while chunk := stream.read(COPY_CHUNK_BYTES):
                written += len(chunk)
                if written > max_bytes:
                    raise FileTooLargeError(max_mb)
                handle.write(chunk)
    except FileTooLargeError:
        remove_quietly(destination)
        record_agent_upload("too_large")
        raise
    return written


@router.post("/upload")
def upload(
    request: Request,
    source_id: int = Form(..., alias="sourceId"),
    original_path: str | None = Form(default=None, alias="originalPath"),
    agent_key: str | None = Form(default=None, alias="agentKey"),
    file: UploadFile = File(...),
    credentials: AgentCredentials = Depends(),
) -> dict[str, Any]:
    """Receive one file from an agent and return the import verdict.

    The agent key is verified before anything is written to staging.
    """

    settings = get_settings()
    service = AgentPushService(settings)
    resolved_key = extract_agent_key(
        header_key=credentials.header_key,
        authorization=credentials.authorization,
        body_key=agent_key,
    )
    client_ip = _client_ip(request)
    source = service.authenticate(source_id, resolved_key, client_ip=client_ip)

    file_name = PurePath((file.filename or "upload").replace("\\", "/")).name or "upload"
    staged_path = settings.ingestion.staging_dir / sanitize_file_name(
        f"push-{source_id}-{uuid.uuid4().hex}-{file_name}"
    )
    size = _stage_upload(
        file.file,
        staged_path,
        max_bytes=settings.uploads.max_file_size_bytes,
        max_mb=settings.uploads.max_file_size_mb,
    )
    logger.info(
        "Agent upload received",
        extra={"source_id": source_id, "file_name": file_name, "status": "received"},
    )

    result = service.handle_upload(
        source_id=source_id,
        agent_key=resolved_key,
        staged_path=staged_path,
        file_name=file_name,
        original_path=original_path,
        size=size,
        client_ip=client_ip,
        source=source,
    )
    return result.to_response()


@router.post("/delete")
def delete(
    request: Request,
    payload: AgentDeleteRequest,
    credentials: AgentCredentials = Depends(),
) -> dict[str, Any]:
    """Mark a file removed on the agent's side and purge its imported datasets."""

    result = AgentPushService().handle_delete(
        source_id=payload.source_id,
        agent_key=extract_agent_key(
            header_key=credentials.header_key,
            authorization=credentials.authorization,
            body_key=payload.agent_key,
        ),
        original_path=payload.original_path or "",
        client_ip=_client_ip(request),
    )
    return result.to_response()
