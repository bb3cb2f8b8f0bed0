"""
Low-performance alert gate for closed jobs.

The gate only decides and marks; delivery (chat groups, e-mail) belongs to a
``NotificationSender`` supplied by the deployment.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app, has_app_context
from sqlalchemy import func, select

from timesheet_app.models import Estimate, Job, JobSpecialShift, JobStatus, Shift, db

from ..errors import NotificationDeliveryError
from ..metrics import record_alert

logger = logging.getLogger(__name__)

HOURLY_RATE = 31
JOB_BONUS_SHARE = 0.25
POTENTIAL_BONUS_SHARE = 0.3


@dataclass(frozen=True)
class JobPerformance:
    at_hours: float
    cl_plan_hours: float
    regular_hours: float
    special_hours: float
    total_worked_hours: float
    total_saved_hours: float
    actual_saved_ratio: float
    planned_saved_ratio: float
    job_bonus_pool: float
    potential_bonus_pool: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def compute_performance(
    at_hours: float,
    cl_plan_hours: float,
    regular_hours: float,
    special_hours: float,
) -> JobPerformance:
    worked = regular_hours + special_hours
    saved = at_hours - worked
    return JobPerformance(
        at_hours=at_hours,
        cl_plan_hours=cl_plan_hours,
        regular_hours=regular_hours,
        special_hours=special_hours,
        total_worked_hours=worked,
        total_saved_hours=saved,
        actual_saved_ratio=(saved / at_hours) if at_hours > 0 else 0.0,
        planned_saved_ratio=(1 - cl_plan_hours / at_hours) if at_hours > 0 else 0.0,
        job_bonus_pool=saved * HOURLY_RATE * JOB_BONUS_SHARE,
        potential_bonus_pool=(at_hours - cl_plan_hours) * HOURLY_RATE * POTENTIAL_BONUS_SHARE,
    )


class PerformanceCalculator:
    """Compute a job's performance from its persisted shifts."""

    def __init__(self, session=None) -> None:
        self.session = session or db.session

    def calculate(self, job: Job) -> JobPerformance:
        at_hours = job.attic_tech_hours
        if not at_hours and job.estimate_id is not None:
            at_hours = self.session.scalar(select(Estimate.attic_hours).where(Estimate.id == job.estimate_id))
        cl_plan = job.cl_estimated_plan_hours or job.crew_leader_hours or 0.0

        regular = self.session.scalar(
            select(func.coalesce(func.sum(Shift.hours), 0)).where(Shift.job_id == job.id)
        )
        special = self.session.scalar(
            select(func.coalesce(func.sum(JobSpecialShift.hours), 0)).where(JobSpecialShift.job_id == job.id)
        )
        return compute_performance(float(at_hours or 0), float(cl_plan), float(regular or 0), float(special or 0))


@dataclass
class NotificationDecision:
    job_id: int
    should_alert: bool
    reason: str
    performance: Optional[JobPerformance] = None
    delivered: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "shouldAlert": self.should_alert,
            "reason": self.reason,
            "delivered": self.delivered,
            "performance": self.performance.as_dict() if self.performance else None,
        }


class NotificationSender:
    """Default sender: writes the alert to the application log."""

    def send(self, job: Job, decision: NotificationDecision) -> None:
        log = current_app.logger if has_app_context() else logger
        performance = decision.performance
        log.warning(
            "Low performance on job '%s': actual saved %.1f%% (planned %.1f%%)",
            job.name,
            performance.actual_saved_ratio * 100 if performance else 0.0,
            performance.planned_saved_ratio * 100 if performance else 0.0,
            extra={"job_id": job.id, "branch_id": job.branch_id},
        )


class NotificationGate:
    def __init__(
        self,
        session=None,
        *,
        calculator: PerformanceCalculator | None = None,
        sender: NotificationSender | None = None,
        threshold: float | None = None,
        closed_status_name: str | None = None,
    ) -> None:
        self.session = session or db.session
        self.calculator = calculator or PerformanceCalculator(self.session)
        self.sender = sender or NotificationSender()
        config = current_app.config if has_app_context() else {}
        self.threshold = float(threshold if threshold is not None else config.get("RECON_LOW_PERFORMANCE_THRESHOLD", 0.0))
        self.closed_status_name = closed_status_name or config.get("RECON_CLOSED_STATUS_NAME", "Closed Job")

    def evaluate(self, job_id: int) -> NotificationDecision:
        """Decide whether ``job_id`` warrants a low-performance alert."""
        job = self.session.get(Job, job_id)
        if job is None:
            return NotificationDecision(job_id=job_id, should_alert=False, reason="job_not_found")

        status_name = None
        if job.status_id is not None:
            status_name = self.session.scalar(select(JobStatus.name).where(JobStatus.id == job.status_id))
        if status_name != self.closed_status_name:
            return NotificationDecision(job_id=job_id, should_alert=False, reason="not_closed")
        if job.notification_sent:
            return NotificationDecision(job_id=job_id, should_alert=False, reason="already_notified")

        performance = self.calculator.calculate(job)
        if performance.at_hours <= 0:
            return NotificationDecision(job_id, False, "missing_at_hours", performance)
        if performance.actual_saved_ratio < self.threshold:
            return NotificationDecision(job_id, True, "low_performance", performance)
        return NotificationDecision(job_id, False, "within_target", performance)

    def dispatch(self, decisions: Iterable[NotificationDecision]) -> List[NotificationDecision]:
        """
        Send alerting decisions and mark their jobs as notified.

        A failed delivery leaves ``notification_sent`` false so the next
        closure check can try again. Sender errors of any kind are logged
        and never raised to the caller, whose transaction is already
        committed.
        """
        handled: List[NotificationDecision] = []
        for decision in decisions:
            handled.append(decision)
            if not decision.should_alert:
                continue
            job = self.session.get(Job, decision.job_id)
            try:
                self.sender.send(job, decision)
            except NotificationDeliveryError as exc:
                record_alert("failed")
                (current_app.logger if has_app_context() else logger).warning(
                    "Failed to deliver low-performance alert for job %s: %s", decision.job_id, exc
                )
                continue
            except Exception:
                record_alert("failed")
                (current_app.logger if has_app_context() else logger).exception(
                    "Notification sender crashed for job %s", decision.job_id
                )
                continue
            job.notification_sent = True
            self.session.commit()
            decision.delivered = True
            record_alert("sent")
        return handled

    def evaluate_and_dispatch(self, job_ids: Iterable[int]) -> List[NotificationDecision]:
        return self.dispatch(self.evaluate(job_id) for job_id in job_ids)
