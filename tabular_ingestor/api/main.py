"""FastAPI application for the tabular ingestion service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..exceptions import PushRejectedError, TabularIngestorError
from ..pipeline.error_handling import classify_error, error_message
from ..utils.config import ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"source_kind": "api"})


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore
    """Application lifespan context manager for startup/shutdown."""
    settings = ensure_runtime_configuration(get_settings())
    settings.ingestion.staging_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Tabular ingestor API starting up...")
    yield
    logger.info("Tabular ingestor API shutting down...")


app = FastAPI(
    title="Tabular Ingestor API",
    description="CSV and Excel ingestion from local folders, cloud drives and push agents",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(TabularIngestorError)
async def tabular_exception_handler(request: Request, exc: TabularIngestorError) -> JSONResponse:
    """Map domain errors to HTTP status codes with a uniform error body."""
    classification = classify_error(exc)
    message = error_message(exc)
    log = logger.error if classification.http_status >= 500 else logger.warning
    log(
        "%s: %s",
        exc.__class__.__name__,
        message,
        extra={
            "path": request.url.path,
            "status": classification.classification,
        },
    )

    content: dict[str, object] = {
        "ok": False,
        "message": message,
        "error_type": exc.__class__.__name__,
    }
    if isinstance(exc, PushRejectedError):
        content.update(
            {
                "sourceId": exc.source_id,
                "ingestionJobId": exc.ingestion_job_id,
                "ingestionFileId": exc.ingestion_file_id,
                "fileHash": exc.file_hash,
            }
        )
    return JSONResponse(status_code=classification.http_status, content=content)


from .routes import agent, datasets, health, history, metrics, sources  # noqa: E402

app.include_router(health.router, tags=["health"])
app.include_router(agent.router, prefix="/api/v1", tags=["agent"])
app.include_router(sources.router, prefix="/api/v1", tags=["sources"])
app.include_router(datasets.router, prefix="/api/v1", tags=["datasets"])
app.include_router(history.router, prefix="/api/v1", tags=["history"])
app.include_router(metrics.router, tags=["monitoring"])
