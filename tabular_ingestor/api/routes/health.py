"""Health check endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ...models.base import get_engine
from ...utils.logging import setup_logger

logger = setup_logger(__name__, context={"source_kind": "api"})
router = APIRouter()


def _database_status() -> dict[str, Any]:
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Database health check failed: %s", exc, extra={"status": "error"})
        return {"status": "error", "error": exc.__class__.__name__}
    return {"status": "ok"}


@router.get("/health")
def health_check() -> JSONResponse:
    """Report database connectivity; 503 when the database is unreachable."""

    database = _database_status()
    healthy = database["status"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "service": "tabular_ingestor",
            "database": database,
        },
    )
