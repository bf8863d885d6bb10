"""Celery task package exposing the configured app and ingestion tasks."""

from __future__ import annotations

from .celery_app import celery_app as app
from .ingestion import (
    run_ingestion_cycle,
    run_ingestion_cycle_task,
    scan_source,
    scan_source_task,
)

__all__ = [
    "app",
    "run_ingestion_cycle",
    "run_ingestion_cycle_task",
    "scan_source",
    "scan_source_task",
]
