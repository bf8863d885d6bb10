"""Operator CLI: run scan cycles, manual scans and maintenance tasks."""
import asyncio
import json
import time
from datetime import timedelta
from typing import Any

import click

from tabular_ingestor import __version__
from tabular_ingestor.exceptions import ConfigurationError, TabularIngestorError
from tabular_ingestor.models.base import session_scope
from tabular_ingestor.models.repository import SourceRepository
from tabular_ingestor.pipeline.coordinator import IngestionCoordinator
from tabular_ingestor.pipeline.history import IngestionHistory, PurgeMode
from tabular_ingestor.schemas.ingestion import CycleReport, ScanSummary
from tabular_ingestor.storage.codec import build_row_codec
from tabular_ingestor.storage.writer import reencode_rows
from tabular_ingestor.utils.audit import AuditAction, AuditOutcome, get_audit_logger
from tabular_ingestor.utils.config import GlobalSettings, ensure_runtime_configuration, get_settings


def _bootstrap() -> GlobalSettings:
    try:
        return ensure_runtime_configuration(get_settings())
    except ConfigurationError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        raise click.Abort()


def _emit(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def print_scan(summary: ScanSummary) -> None:
    """Print one scan summary as a single line plus its errors."""
    click.echo(
        f"source {summary.source_id}: discovered={summary.discovered} queued={summary.queued} "
        f"skipped={summary.skipped} updated={summary.updated} failed={summary.failed} "
        f"deleted={summary.deleted}"
    )
    for error in summary.errors:
        click.echo(f"  ! {error}")


def print_cycle(report: CycleReport) -> None:
    for summary in report.scans:
        print_scan(summary)
    for job in report.jobs:
        detail = f"rows={job.rows_imported}" if job.error is None else f"error={job.error}"
        click.echo(f"job {job.job_id} [{job.status}] {job.file_name or '-'} {detail}")
    click.echo(f"{len(report.scans)} scan(s), {len(report.jobs)} job(s)")


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Tabular ingestion service commands."""


@cli.command()
@click.option("--drain-limit", type=int, default=None, help="Jobs processed per cycle.")
@click.option("--json", "output_json", is_flag=True, help="Output the report as JSON.")
def cycle(drain_limit: int | None, output_json: bool) -> None:
    """Run a single scan cycle: scan due sources, then drain pending jobs."""
    _bootstrap()
    report = asyncio.run(IngestionCoordinator().run_cycle(drain_limit=drain_limit))
    if output_json:
        _emit(report.to_response())
    else:
        print_cycle(report)


@cli.command()
@click.option("--interval", type=int, default=None, help="Seconds between cycles.")
@click.option("--max-cycles", type=int, default=None, help="Stop after this many cycles.")
def watch(interval: int | None, max_cycles: int | None) -> None:
    """Run scan cycles forever, one at a time.

    Equivalent to the Celery beat schedule for single-process deployments.
    """
    settings = _bootstrap()
    pause = interval or settings.ingestion.poll_seconds
    coordinator = IngestionCoordinator(settings)
    completed = 0
    click.echo(f"Watching sources every {pause}s")
    while max_cycles is None or completed < max_cycles:
        try:
            print_cycle(asyncio.run(coordinator.run_cycle()))
        except TabularIngestorError as exc:
            click.echo(f"Cycle failed: {exc}", err=True)
        completed += 1
        if max_cycles is not None and completed >= max_cycles:
            break
        time.sleep(pause)


@cli.command()
@click.argument("source_id", type=int)
@click.option("--retry-failed", is_flag=True, help="Re-register files whose last attempt failed.")
@click.option("--json", "output_json", is_flag=True, help="Output the summary as JSON.")
def scan(source_id: int, retry_failed: bool, output_json: bool) -> None:
    """Scan one source now, regardless of its poll interval."""
    _bootstrap()
    try:
        summary = asyncio.run(
            IngestionCoordinator().scan_source(source_id, retry_failed=retry_failed)
        )
    except TabularIngestorError as exc:
        click.echo(f"Scan failed: {exc}", err=True)
        raise click.Abort()

    get_audit_logger().log(
        AuditAction.MANUAL_SCAN,
        AuditOutcome.SUCCESS,
        actor="cli",
        actor_type="operator",
        resource=f"source:{source_id}",
        retry_failed=retry_failed,
    )
    if output_json:
        _emit(summary.to_response())
    else:
        print_scan(summary)


@cli.command("requeue-stale")
@click.option(
    "--older-than",
    type=click.IntRange(min=1),
    required=True,
    help="Seconds a job may stay PROCESSING before it is considered stuck.",
)
def requeue_stale(older_than: int) -> None:
    """Fail stuck PROCESSING jobs and queue a fresh attempt for each."""
    _bootstrap()
    requeued = IngestionCoordinator().requeue_stale(timedelta(seconds=older_than))
    get_audit_logger().log(
        AuditAction.JOBS_REQUEUED,
        AuditOutcome.SUCCESS,
        actor="cli",
        actor_type="operator",
        job_ids=requeued,
        older_than_seconds=older_than,
    )
    click.echo(f"Requeued {len(requeued)} job(s)")


@cli.command("clear-history")
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in PurgeMode], case_sensitive=False),
    default=PurgeMode.DELETED.value,
    show_default=True,
    help="'deleted' prunes files removed at their source; 'all' also prunes finished jobs.",
)
@click.option("--source-id", type=int, default=None, help="Limit pruning to one source.")
def clear_history(mode: str, source_id: int | None) -> None:
    """Prune ingestion history rows that change detection no longer needs."""
    _bootstrap()
    purge_mode = PurgeMode(mode.lower())
    with session_scope() as session:
        counts = IngestionHistory(session).clear(purge_mode, source_id=source_id)

    get_audit_logger().log(
        AuditAction.HISTORY_CLEARED,
        AuditOutcome.SUCCESS,
        actor="cli",
        actor_type="operator",
        resource=f"source:{source_id}" if source_id else "ingestion_history",
        mode=purge_mode.value,
        deleted_files=counts.deleted_files,
        deleted_jobs=counts.deleted_jobs,
    )
    click.echo(f"Deleted {counts.deleted_files} file record(s) and {counts.deleted_jobs} job(s)")


@cli.command("issue-agent-key")
@click.argument("source_id", type=int)
def issue_agent_key(source_id: int) -> None:
    """Generate a new agent secret for a push source. The secret is shown once."""
    _bootstrap()
    try:
        with session_scope() as session:
            raw_key = SourceRepository(session).issue_agent_key(source_id)
    except TabularIngestorError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise click.Abort()

    get_audit_logger().log(
        AuditAction.AGENT_KEY_ISSUED,
        AuditOutcome.SUCCESS,
        actor="cli",
        actor_type="operator",
        resource=f"source:{source_id}",
    )
    click.echo(raw_key)


@cli.command("encrypt-rows")
@click.option("--batch-size", type=click.IntRange(min=1), default=500, show_default=True)
def encrypt_rows(batch_size: int) -> None:
    """Re-encode stored plaintext rows with the configured encryption key."""
    settings = _bootstrap()
    if not settings.data_encryption_key:
        click.echo("Error: TABULAR_DATA_ENCRYPTION_KEY is not set.", err=True)
        raise click.Abort()

    with session_scope() as session:
        rewritten = reencode_rows(session, build_row_codec(settings), batch_size=batch_size)

    get_audit_logger().log(
        AuditAction.ROWS_REENCRYPTED,
        AuditOutcome.SUCCESS,
        actor="cli",
        actor_type="operator",
        rows=rewritten,
    )
    click.echo(f"Encrypted {rewritten} row(s)")


if __name__ == "__main__":
    cli()
