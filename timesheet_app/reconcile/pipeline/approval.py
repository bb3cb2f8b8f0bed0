"""
Shift approval state machine.

A shift row is *suggested* while ``approved_shift`` is false. Approving flips
the flag; rejecting deletes the row. Both are terminal and both are no-ops for
pairs that are not currently suggested. After every batch each touched job is
re-checked: zero suggested shifts of either kind closes the job.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from flask import current_app, has_app_context
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from timesheet_app.models import (
    Branch,
    CrewMember,
    Estimate,
    Job,
    JobSpecialShift,
    JobStatus,
    Shift,
    SpecialShift,
    db,
)

from ..errors import RowProcessingError, ValidationError
from ..metrics import record_jobs_closed, record_shift_decision
from .cache import LookupCache
from .notifications import NotificationGate

JOB_STATUS_CACHE = "job_status"

Pair = Tuple[int, int]


def _parse_pairs(items: Optional[Iterable[Mapping[str, Any]]], key: str) -> List[Pair]:
    pairs: List[Pair] = []
    for item in items or ():
        if not isinstance(item, Mapping):
            raise ValidationError(f"Each entry must be an object with `{key}` and `job_id`.")
        try:
            pairs.append((int(item["job_id"]), int(item[key])))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Each entry must carry integer `{key}` and `job_id`.") from exc
    return pairs


def _group_by_job(pairs: Sequence[Pair]) -> Dict[int, List[int]]:
    grouped: Dict[int, List[int]] = defaultdict(list)
    for job_id, other_id in pairs:
        if other_id not in grouped[job_id]:
            grouped[job_id].append(other_id)
    return grouped


class ApprovalService:
    def __init__(
        self,
        session=None,
        cache: LookupCache | None = None,
        *,
        notification_gate: NotificationGate | None = None,
        closed_status_name: str | None = None,
    ) -> None:
        self.session = session or db.session
        self.cache = cache if cache is not None else LookupCache()
        config = current_app.config if has_app_context() else {}
        self.closed_status_name = closed_status_name or config.get("RECON_CLOSED_STATUS_NAME", "Closed Job")
        self.notification_gate = notification_gate or NotificationGate(
            self.session, closed_status_name=self.closed_status_name
        )

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #
    def approve(self, shifts=None, special_shifts=None) -> Dict[str, Any]:
        """
        Approve suggested shifts and close every touched job left without suggestions.

        Raises:
            ValidationError: both lists are empty or malformed.
        """
        regular_pairs, special_pairs = self._validated(shifts, special_shifts)
        regular_by_job = _group_by_job(regular_pairs)
        special_by_job = _group_by_job(special_pairs)
        job_ids = sorted(set(regular_by_job) | set(special_by_job))

        try:
            self._lock_jobs(job_ids)
            regular_count = self._transition(Shift, Shift.crew_member_id, regular_by_job, approve=True)
            special_count = self._transition(
                JobSpecialShift, JobSpecialShift.special_shift_id, special_by_job, approve=True
            )
            closed = self._close_completed(job_ids)
            self.session.commit()
        except SQLAlchemyError as exc:
            self._abort()
            raise RowProcessingError("Internal error while approving shifts; no changes were saved.") from exc

        record_shift_decision("approved", "regular", regular_count)
        record_shift_decision("approved", "special", special_count)
        record_jobs_closed(len(closed))
        self._log(
            "Approved %s regular and %s special shifts; closed %s jobs",
            regular_count,
            special_count,
            len(closed),
        )

        decisions = self.notification_gate.evaluate_and_dispatch(closed)
        return {
            "success": True,
            "approvedCount": regular_count + special_count,
            "regularApprovedCount": regular_count,
            "specialApprovedCount": special_count,
            "jobsClosedCount": len(closed),
            "closedJobIds": closed,
            "alerts": [decision.as_dict() for decision in decisions if decision.should_alert],
        }

    def reject(self, shifts=None, special_shifts=None) -> Dict[str, Any]:
        """Delete suggested shifts, then re-run the closure check for touched jobs."""
        regular_pairs, special_pairs = self._validated(shifts, special_shifts)
        regular_by_job = _group_by_job(regular_pairs)
        special_by_job = _group_by_job(special_pairs)
        job_ids = sorted(set(regular_by_job) | set(special_by_job))

        try:
            self._lock_jobs(job_ids)
            regular_count = self._transition(Shift, Shift.crew_member_id, regular_by_job, approve=False)
            special_count = self._transition(
                JobSpecialShift, JobSpecialShift.special_shift_id, special_by_job, approve=False
            )
            closed = self._close_completed(job_ids)
            self.session.commit()
        except SQLAlchemyError as exc:
            self._abort()
            raise RowProcessingError("Internal error while rejecting shifts; no changes were saved.") from exc

        record_shift_decision("rejected", "regular", regular_count)
        record_shift_decision("rejected", "special", special_count)
        record_jobs_closed(len(closed))
        self._log("Rejected %s regular and %s special shifts", regular_count, special_count)

        self.notification_gate.evaluate_and_dispatch(closed)
        return {
            "success": True,
            "rejectedCount": regular_count + special_count,
            "regularRejectedCount": regular_count,
            "specialRejectedCount": special_count,
            "jobsClosedCount": len(closed),
            "closedJobIds": closed,
        }

    def close_completed_jobs(self, job_ids: Iterable[int]) -> List[int]:
        """Run the closure check on its own for the given jobs and commit."""
        ids = sorted(set(job_ids))
        try:
            self._lock_jobs(ids)
            closed = self._close_completed(ids)
            self.session.commit()
        except SQLAlchemyError as exc:
            self._abort()
            raise RowProcessingError("Internal error while closing jobs.") from exc
        record_jobs_closed(len(closed))
        return closed

    def approve_job(self, job_id: int) -> Dict[str, Any]:
        """Approve every suggested shift on one job."""
        member_ids = self.session.scalars(
            select(Shift.crew_member_id).where(Shift.job_id == job_id, Shift.approved_shift.is_(False))
        ).all()
        special_ids = self.session.scalars(
            select(JobSpecialShift.special_shift_id).where(
                JobSpecialShift.job_id == job_id, JobSpecialShift.approved_shift.is_(False)
            )
        ).all()
        if not member_ids and not special_ids:
            closed = self.close_completed_jobs([job_id])
            return {
                "success": True,
                "approvedCount": 0,
                "regularApprovedCount": 0,
                "specialApprovedCount": 0,
                "jobsClosedCount": len(closed),
                "closedJobIds": closed,
                "alerts": [],
            }
        return self.approve(
            [{"job_id": job_id, "crew_member_id": member_id} for member_id in member_ids],
            [{"job_id": job_id, "special_shift_id": special_id} for special_id in special_ids],
        )

    # ------------------------------------------------------------------ #
    # Closure
    # ------------------------------------------------------------------ #
    def _lock_jobs(self, job_ids: Sequence[int]) -> List[Job]:
        if not job_ids:
            return []
        return list(
            self.session.scalars(select(Job).where(Job.id.in_(job_ids)).order_by(Job.id).with_for_update())
        )

    def _transition(self, model, key_column, by_job: Mapping[int, List[int]], *, approve: bool) -> int:
        """Approve or delete the still-suggested rows among the requested pairs."""
        affected = 0
        for job_id, requested in by_job.items():
            suggested = self.session.scalars(
                select(key_column).where(
                    model.job_id == job_id,
                    key_column.in_(requested),
                    model.approved_shift.is_(False),
                )
            ).all()
            if not suggested:
                continue
            if approve:
                stmt = update(model).values(approved_shift=True)
            else:
                stmt = delete(model)
            self.session.execute(stmt.where(model.job_id == job_id, key_column.in_(suggested)))
            affected += len(suggested)
        return affected

    def _pending_counts(self, job_id: int) -> Tuple[int, int]:
        regular = self.session.scalar(
            select(func.count()).select_from(Shift).where(Shift.job_id == job_id, Shift.approved_shift.is_(False))
        )
        special = self.session.scalar(
            select(func.count())
            .select_from(JobSpecialShift)
            .where(JobSpecialShift.job_id == job_id, JobSpecialShift.approved_shift.is_(False))
        )
        return int(regular or 0), int(special or 0)

    def _close_completed(self, job_ids: Sequence[int]) -> List[int]:
        """Close the locked jobs that have no suggested shifts; returns the ids transitioned."""
        if not job_ids:
            return []
        closed_status_id = self._closed_status_id()
        closed: List[int] = []
        for job in self.session.scalars(select(Job).where(Job.id.in_(job_ids)).order_by(Job.id)):
            if job.status_id == closed_status_id:
                continue
            regular, special = self._pending_counts(job.id)
            if regular or special:
                continue
            job.status_id = closed_status_id
            if job.closing_date is None:
                job.closing_date = datetime.now(timezone.utc)
            closed.append(job.id)
        self.session.flush()
        return closed

    def _closed_status_id(self) -> int:
        def load() -> Optional[int]:
            return self.session.scalar(select(JobStatus.id).where(JobStatus.name == self.closed_status_name))

        status_id = self.cache.get_or_load(JOB_STATUS_CACHE, self.closed_status_name, load)
        if status_id is None:
            status = JobStatus(name=self.closed_status_name)
            self.session.add(status)
            self.session.flush()
            self.cache.invalidate(JOB_STATUS_CACHE)
            self.cache.set(JOB_STATUS_CACHE, self.closed_status_name, status.id)
            status_id = status.id
        return status_id

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def pending_shifts(self, branch_id: Optional[int] = None, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        """Suggested shifts grouped by job, paginated over regular shifts."""
        limit = max(1, min(int(limit), 500))
        offset = max(0, int(offset))

        base = (
            select(Shift, Job, CrewMember)
            .join(Job, Shift.job_id == Job.id)
            .join(CrewMember, Shift.crew_member_id == CrewMember.id)
            .where(Shift.approved_shift.is_(False))
        )
        count_stmt = select(func.count()).select_from(Shift).join(Job, Shift.job_id == Job.id).where(
            Shift.approved_shift.is_(False)
        )
        if branch_id is not None:
            base = base.where(Job.branch_id == branch_id)
            count_stmt = count_stmt.where(Job.branch_id == branch_id)

        total = int(self.session.scalar(count_stmt) or 0)
        rows = self.session.execute(
            base.order_by(Job.id, Shift.is_leader.desc(), CrewMember.name).limit(limit).offset(offset)
        ).all()

        groups: Dict[int, Dict[str, Any]] = {}
        for shift, job, member in rows:
            if job.id not in groups:
                groups[job.id] = self._job_group(job)
            groups[job.id]["shifts"].append(
                {
                    "crewMemberId": member.id,
                    "crewMemberName": member.name,
                    "hours": float(shift.hours or 0),
                    "isLeader": shift.is_leader,
                }
            )

        special_stmt = (
            select(JobSpecialShift, Job, SpecialShift)
            .join(Job, JobSpecialShift.job_id == Job.id)
            .join(SpecialShift, JobSpecialShift.special_shift_id == SpecialShift.id)
            .where(JobSpecialShift.approved_shift.is_(False))
            .order_by(Job.id, SpecialShift.name)
        )
        if branch_id is not None:
            special_stmt = special_stmt.where(Job.branch_id == branch_id)
        for special, job, special_type in self.session.execute(special_stmt):
            # Jobs with only special suggestions are listed on the first page.
            if job.id not in groups and offset > 0:
                continue
            if job.id not in groups:
                groups[job.id] = self._job_group(job)
            groups[job.id]["specialShifts"].append(
                {
                    "specialShiftId": special_type.id,
                    "name": special_type.name,
                    "hours": float(special.hours or 0),
                    "date": special.date.isoformat() if special.date else None,
                }
            )

        return {
            "jobs": list(groups.values()),
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(rows) < total,
        }

    def _job_group(self, job: Job) -> Dict[str, Any]:
        branch = self.session.get(Branch, job.branch_id) if job.branch_id is not None else None
        estimate = self.session.get(Estimate, job.estimate_id) if job.estimate_id is not None else None
        return {
            "jobId": job.id,
            "jobName": job.name,
            "branch": {"id": branch.id, "name": branch.name} if branch else None,
            "estimate": {"id": estimate.id, "name": estimate.name} if estimate else None,
            "closingDate": job.closing_date.isoformat() if job.closing_date else None,
            "shifts": [],
            "specialShifts": [],
        }

    def pending_stats(self) -> Dict[str, Any]:
        regular_rows = self.session.execute(
            select(Job.branch_id, func.count(), func.coalesce(func.sum(Shift.hours), 0))
            .select_from(Shift)
            .join(Job, Shift.job_id == Job.id)
            .where(Shift.approved_shift.is_(False))
            .group_by(Job.branch_id)
        ).all()
        special_rows = self.session.execute(
            select(Job.branch_id, func.count(), func.coalesce(func.sum(JobSpecialShift.hours), 0))
            .select_from(JobSpecialShift)
            .join(Job, JobSpecialShift.job_id == Job.id)
            .where(JobSpecialShift.approved_shift.is_(False))
            .group_by(Job.branch_id)
        ).all()

        per_branch: Dict[Optional[int], Dict[str, float]] = defaultdict(
            lambda: {"regularPending": 0, "specialPending": 0, "pendingHours": 0.0}
        )
        for branch_id, count, hours in regular_rows:
            per_branch[branch_id]["regularPending"] += int(count)
            per_branch[branch_id]["pendingHours"] += float(hours or 0)
        for branch_id, count, hours in special_rows:
            per_branch[branch_id]["specialPending"] += int(count)
            per_branch[branch_id]["pendingHours"] += float(hours or 0)

        names = {}
        branch_ids = [branch_id for branch_id in per_branch if branch_id is not None]
        if branch_ids:
            names = dict(self.session.execute(select(Branch.id, Branch.name).where(Branch.id.in_(branch_ids))).all())

        by_branch = []
        for branch_id, stats in sorted(per_branch.items(), key=lambda item: (item[0] is None, item[0] or 0)):
            by_branch.append(
                {
                    "branchId": branch_id,
                    "branchName": names.get(branch_id),
                    "pendingShifts": stats["regularPending"] + stats["specialPending"],
                    "regularPending": stats["regularPending"],
                    "specialPending": stats["specialPending"],
                    "pendingHours": round(stats["pendingHours"], 2),
                }
            )

        regular_total = sum(item["regularPending"] for item in by_branch)
        special_total = sum(item["specialPending"] for item in by_branch)
        return {
            "totalPendingShifts": regular_total + special_total,
            "regularPending": regular_total,
            "specialPending": special_total,
            "totalPendingHours": round(sum(item["pendingHours"] for item in by_branch), 2),
            "byBranch": by_branch,
        }

    # ------------------------------------------------------------------ #
    def _validated(self, shifts, special_shifts) -> Tuple[List[Pair], List[Pair]]:
        regular_pairs = _parse_pairs(shifts, "crew_member_id")
        special_pairs = _parse_pairs(special_shifts, "special_shift_id")
        if not regular_pairs and not special_pairs:
            raise ValidationError("No shifts provided.")
        return regular_pairs, special_pairs

    def _abort(self) -> None:
        self.session.rollback()
        self.cache.clear()

    def _log(self, message: str, *args) -> None:
        if has_app_context():
            current_app.logger.info(message, *args)
