"""Prometheus metrics helpers for row reconciliation and shift approval."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_rows_counter = Counter(
    "recon_rows_processed_total",
    "Timesheet rows processed by outcome.",
    ["outcome"],
)
_row_duration = Histogram(
    "recon_row_duration_seconds",
    "Duration of a single row reconciliation in seconds.",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)
_missing_crew_counter = Counter(
    "recon_missing_crew_members_total",
    "Crew member names that could not be resolved, by column type.",
    ["type"],
)
_shift_decisions = Counter(
    "recon_shift_decisions_total",
    "Shift approval decisions by action and shift kind.",
    ["action", "kind"],
)
_jobs_closed_counter = Counter(
    "recon_jobs_closed_total",
    "Jobs transitioned to the closed status.",
)
_alerts_counter = Counter(
    "recon_performance_alerts_total",
    "Low-performance alerts by delivery outcome.",
    ["outcome"],
)


def record_row_outcome(outcome: str, duration_seconds: float | None = None) -> None:
    """Count a processed row; ``outcome`` is ``success``, ``dry_run`` or an error type."""

    _rows_counter.labels(outcome=outcome).inc()
    if duration_seconds is not None:
        _row_duration.observe(duration_seconds)


def record_missing_crew_member(kind: str) -> None:
    _missing_crew_counter.labels(type=kind).inc()


def record_shift_decision(
    action: Literal["approved", "rejected"],
    kind: Literal["regular", "special"],
    count: int,
) -> None:
    """Increment approval counters by the number of affected rows."""

    if count:
        _shift_decisions.labels(action=action, kind=kind).inc(count)


def record_jobs_closed(count: int) -> None:
    if count:
        _jobs_closed_counter.inc(count)


def record_alert(outcome: Literal["sent", "failed"]) -> None:
    _alerts_counter.labels(outcome=outcome).inc()
