"""
``flask recon`` commands for operators.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Optional

import click
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import current_app
from flask.cli import AppGroup

from .celery_app import get_celery_app
from .errors import ReconciliationError
from .pipeline import ApprovalService, ColumnMapStore, RowReconciliationService
from .tasks import enqueue_row_batches

recon_cli = AppGroup("recon", help="Timesheet reconciliation commands.")


def get_disabled_recon_group() -> click.Group:
    """Return a group that tells the operator the reconciler is disabled."""

    @click.group(name="recon", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Reconciliation commands are unavailable because RECON_ENABLED=false.")

    return disabled_group


def _load_rows(file_path: Path) -> List[dict]:
    """Read a JSON array or JSON-lines file of row payloads."""
    text = file_path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            rows = json.loads(text)
        except json.JSONDecodeError as exc:
            raise click.ClickException(f"{file_path} is not valid JSON: {exc}") from exc
        return list(rows)

    rows = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            rows.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise click.ClickException(f"Line {line_number} of {file_path} is not valid JSON: {exc}") from exc
    return rows


def _fail(error: ReconciliationError) -> click.ClickException:
    return click.ClickException(json.dumps(error.to_dict()))


@recon_cli.command("sync-columns")
@click.argument("sheet_name")
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--dry-run", is_flag=True, help="Show the column map without saving it.")
def sync_columns(sheet_name: str, file_path: Path, dry_run: bool):
    """Sync SHEET_NAME's column map from a JSON header file (array or object)."""
    try:
        header: Any = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{file_path} is not valid JSON: {exc}") from exc
    try:
        summary = ColumnMapStore().sync_header(sheet_name, header, dry_run=dry_run)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    click.echo(json.dumps(summary, indent=2))


@recon_cli.command("process-file")
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--dry-run", is_flag=True, help="Resolve and extract without writing anything.")
@click.option("--summary-json", is_flag=True, help="Print the full per-row payload instead of a summary.")
@click.option("--queue", is_flag=True, help="Hand the rows to the bulk worker instead of running them here.")
def process_file(file_path: Path, dry_run: bool, summary_json: bool, queue: bool):
    """Reconcile every row payload in FILE_PATH (JSON array or JSON lines)."""
    rows = _load_rows(file_path)
    if queue:
        task_ids = enqueue_row_batches(rows, dry_run=dry_run)
        click.echo(f"Queued {len(rows)} rows in {len(task_ids)} batches: {', '.join(task_ids)}")
        return
    outcome = RowReconciliationService().process_rows(rows, dry_run=dry_run)
    if summary_json:
        click.echo(json.dumps(outcome, indent=2, default=str))
        return

    click.echo(
        f"Processed {outcome['processed']} rows (dry_run={dry_run}).\n"
        f"  succeeded: {outcome['succeeded']}\n"
        f"  failed   : {outcome['failed']}"
    )
    for error in outcome["errors"]:
        click.echo(
            f"  ! row {error.get('rowNumber', '?')} of {error.get('sheetName', '?')}: {error['error']}",
            err=True,
        )
    if outcome["failed"]:
        current_app.logger.warning("process-file finished with %s failed rows", outcome["failed"])


@recon_cli.command("pending")
@click.option("--branch-id", type=int, help="Only show jobs of this branch.")
@click.option("--limit", type=int, default=50, show_default=True)
def pending(branch_id: Optional[int], limit: int):
    """List suggested shifts awaiting approval, grouped by job."""
    payload = ApprovalService().pending_shifts(branch_id=branch_id, limit=limit)
    if not payload["jobs"]:
        click.echo("No pending shifts.")
        return
    for job in payload["jobs"]:
        click.echo(f"Job {job['jobId']}: {job['jobName']}")
        for shift in job["shifts"]:
            leader = " (leader)" if shift["isLeader"] else ""
            click.echo(f"  - {shift['crewMemberName']}{leader}: {shift['hours']}h")
        for special in job["specialShifts"]:
            click.echo(f"  * {special['name']}: {special['hours']}h")
    if payload["hasMore"]:
        click.echo(f"... {payload['total']} pending shifts in total")


@recon_cli.command("approve-job")
@click.argument("job_id", type=int)
def approve_job(job_id: int):
    """Approve every suggested shift on JOB_ID and run the closure check."""
    try:
        result = ApprovalService().approve_job(job_id)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    click.echo(
        f"Approved {result['approvedCount']} shifts on job {job_id}; "
        f"closed jobs: {', '.join(str(job) for job in result['closedJobIds']) or 'none'}"
    )


@recon_cli.command("worker-ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
def worker_ping(timeout: float):
    """Check that a bulk worker answers the heartbeat task."""
    celery_app = get_celery_app(current_app)
    if celery_app is None:
        raise click.ClickException("The bulk worker is not configured.")
    task = celery_app.tasks.get("reconcile.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'reconcile.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))
