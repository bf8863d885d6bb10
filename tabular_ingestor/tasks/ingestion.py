"""Celery tasks driving the scan cycle and manual source scans."""

from __future__ import annotations

import asyncio
import threading
from typing import Any

from ..pipeline.coordinator import IngestionCoordinator
from ..utils.config import ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger
from .celery_app import CYCLE_TASK_NAME, SCAN_TASK_NAME, celery_app

logger = setup_logger(__name__, context={"source_kind": "worker"})

_CYCLE_LOCK = threading.Lock()


def run_ingestion_cycle(drain_limit: int | None = None) -> dict[str, Any]:
    """Run one cycle unless another cycle is already active in this process."""

    if not _CYCLE_LOCK.acquire(blocking=False):
        logger.info("Previous ingestion cycle still running; skipping", extra={"status": "skipped"})
        return {"skipped": True}

    try:
        ensure_runtime_configuration(get_settings())
        report = asyncio.run(IngestionCoordinator().run_cycle(drain_limit=drain_limit))
    finally:
        _CYCLE_LOCK.release()

    logger.info(
        "Ingestion cycle finished: %d scan(s), %d job(s)",
        len(report.scans),
        len(report.jobs),
        extra={"status": "ok"},
    )
    return report.to_response()


def scan_source(source_id: int, retry_failed: bool = False) -> dict[str, Any]:
    ensure_runtime_configuration(get_settings())
    summary = asyncio.run(
        IngestionCoordinator().scan_source(source_id, retry_failed=retry_failed)
    )
    return summary.to_response()


@celery_app.task(name=CYCLE_TASK_NAME)
def run_ingestion_cycle_task(drain_limit: int | None = None) -> dict[str, Any]:
    return run_ingestion_cycle(drain_limit)


@celery_app.task(name=SCAN_TASK_NAME)
def scan_source_task(source_id: int, retry_failed: bool = False) -> dict[str, Any]:
    return scan_source(source_id, retry_failed)


__all__ = [
    "run_ingestion_cycle",
    "run_ingestion_cycle_task",
    "scan_source",
    "scan_source_task",
]
