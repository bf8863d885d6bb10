"""Celery application configuration for tabular_ingestor."""

from __future__ import annotations

from celery import Celery

from ..utils.config import get_settings

CYCLE_TASK_NAME = "tabular_ingestor.run_ingestion_cycle"
SCAN_TASK_NAME = "tabular_ingestor.scan_source"


def _resolve_redis_url() -> str:
    """Return the Redis URL configured for the application."""

    settings = get_settings()
    return settings.redis_url or "redis://localhost:6379/0"


celery_app = Celery(
    "tabular_ingestor",
    broker=_resolve_redis_url(),
    backend=_resolve_redis_url(),
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_hijack_root_logger=False,
    beat_schedule={
        "ingestion-cycle": {
            "task": CYCLE_TASK_NAME,
            "schedule": float(get_settings().ingestion.poll_seconds),
            "options": {"expires": float(get_settings().ingestion.poll_seconds)},
        },
    },
)

celery_app.autodiscover_tasks(["tabular_ingestor.tasks"])
