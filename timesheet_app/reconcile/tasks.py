"""
Celery tasks for bulk row reconciliation.

Rows sharing a job name always run in order inside one task, so two workers
never write the same job concurrently.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from celery import shared_task
from flask import current_app

from .pipeline.row_service import RowReconciliationService


def group_rows_by_job(service: RowReconciliationService, rows: Iterable[Mapping[str, Any]]) -> List[List[Mapping[str, Any]]]:
    """Group payloads by job name, keeping first-seen order. Unreadable rows form their own group."""
    groups: "OrderedDict[Any, List[Mapping[str, Any]]]" = OrderedDict()
    for index, payload in enumerate(rows):
        job_name = service.job_name_for(payload)
        key = job_name if job_name is not None else ("__unkeyed__", index)
        groups.setdefault(key, []).append(payload)
    return list(groups.values())


def partition_groups(groups: List[List[Mapping[str, Any]]], buckets: int) -> List[List[Mapping[str, Any]]]:
    """Spread whole job groups over at most ``buckets`` batches, largest first."""
    buckets = max(1, buckets)
    batches: List[List[Mapping[str, Any]]] = [[] for _ in range(min(buckets, len(groups)) or 1)]
    for group in sorted(groups, key=len, reverse=True):
        min(batches, key=len).extend(group)
    return [batch for batch in batches if batch]


@shared_task(name="reconcile.healthcheck", bind=True)
def reconcile_healthcheck(self) -> Dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="reconcile.process_row_batch", bind=True)
def process_row_batch(self, *, rows: List[Dict[str, Any]], dry_run: bool = False) -> Dict[str, Any]:
    """
    Reconcile a batch of row payloads, one job group after another.
    """
    service = RowReconciliationService()
    summary: Dict[str, Any] = {"processed": 0, "succeeded": 0, "failed": 0, "groups": 0, "results": [], "errors": []}
    for group in group_rows_by_job(service, rows):
        outcome = service.process_rows(group, dry_run=dry_run)
        summary["groups"] += 1
        for key in ("processed", "succeeded", "failed"):
            summary[key] += outcome[key]
        summary["results"].extend(outcome["results"])
        summary["errors"].extend(outcome["errors"])

    current_app.logger.info(
        "Batch reconciled %s rows (%s failed) across %s jobs",
        summary["processed"],
        summary["failed"],
        summary["groups"],
        extra={"task_id": self.request.id, "dry_run": dry_run},
    )
    return summary


def enqueue_row_batches(rows: List[Dict[str, Any]], *, dry_run: bool = False, max_workers: Optional[int] = None) -> List[str]:
    """Queue the rows as up to ``RECON_BULK_MAX_WORKERS`` tasks; returns task ids."""
    if max_workers is None:
        max_workers = int(current_app.config.get("RECON_BULK_MAX_WORKERS", 1))
    service = RowReconciliationService()
    batches = partition_groups(group_rows_by_job(service, rows), max_workers)
    task_ids = []
    for batch in batches:
        result = process_row_batch.apply_async(kwargs={"rows": list(batch), "dry_run": dry_run})
        task_ids.append(result.id)
    return task_ids
