"""
Row reconciliation service.

``process_row`` takes one sheet row through decoding, entity resolution and
shift extraction, then replaces the job's shift candidates in a single
transaction that holds a row lock on the job.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from flask import current_app, has_app_context
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from timesheet_app.models import (
    AutomationErrorLog,
    Branch,
    CrewMember,
    Estimate,
    EstimateStatus,
    Job,
    JobSpecialShift,
    JobStatus,
    Shift,
    db,
)

from ..errors import MissingEntityError, ReconciliationError, RowProcessingError, ValidationError
from ..metrics import record_missing_crew_member, record_row_outcome
from .cache import LookupCache
from .column_map import ColumnEntry, ColumnMapStore, locate_sentinels
from .matching import normalize_name
from .resolver import EntityResolver
from .rows import clean_cell, decode_row, parse_hours, transform_row
from .shifts import ExtractionResult, ShiftCandidate, ShiftExtractor, split_leader_label, strip_emoji

logger = logging.getLogger(__name__)

JOB_NAME_FIELD = "Job Name"
BRANCH_FIELD = "Branch"
SALESPERSON_FIELD = "Salesperson"
CREW_LEAD_FIELD = "Crew Lead"
CL_PLAN_FIELD = "CL Estimated Plan Hours"
AT_HOURS_FIELD = "AT Estimated Hours"
NOTES_FIELD = "Branch notes"
FINISH_DATE_FIELD = "Finish Date"

JOB_STATUS_CACHE = "job_status"
ESTIMATE_STATUS_CACHE = "estimate_status"

_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d", "%m-%d-%Y", "%d.%m.%Y")


def parse_finish_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a sheet date cell into an aware UTC datetime, or None."""
    if not value:
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class LeaderResolution:
    requested_name: Optional[str] = None
    column_field: Optional[str] = None
    member: Optional[CrewMember] = None
    hours: Optional[float] = None


class RowReconciliationService:
    """Reconcile sheet rows into jobs and suggested shifts."""

    def __init__(self, session=None, cache: LookupCache | None = None, *, config: Mapping[str, Any] | None = None) -> None:
        self.session = session or db.session
        self.cache = cache if cache is not None else LookupCache()
        if config is None:
            config = current_app.config if has_app_context() else {}
        self.config = config
        self.closed_status_name = config.get("RECON_CLOSED_STATUS_NAME", "Closed Job")
        self.open_status_name = config.get("RECON_OPEN_STATUS_NAME", "Uploading Shifts")
        self.sold_status_name = config.get("RECON_SOLD_STATUS_NAME", "Sold")
        self.preserve_unchanged = bool(config.get("RECON_PRESERVE_UNCHANGED_APPROVALS", False))
        strict = bool(config.get("RECON_STRICT_SENTINELS", False))

        self.column_maps = ColumnMapStore(self.session, strict_sentinels=strict)
        self.resolver = EntityResolver(
            self.session,
            self.cache,
            threshold=config.get("RECON_FUZZY_THRESHOLD"),
            closed_status_name=self.closed_status_name,
        )
        self.extractor = ShiftExtractor(
            self.resolver,
            self.cache,
            special_shift_names=config.get("RECON_SPECIAL_SHIFT_NAMES", ()),
            strict_sentinels=strict,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def process_row(self, sheet_name: str, row_data: Any, row_number: Optional[int], *, dry_run: bool = False) -> Dict[str, Any]:
        """
        Reconcile one row and return the result payload.

        On any failure the transaction is rolled back, a diagnostics entry is
        written (unless ``dry_run``) and the error is re-raised with the
        sheet/row context attached.
        """
        started = time.perf_counter()
        try:
            result = self._process(sheet_name, row_data, row_number, dry_run=dry_run)
            if dry_run:
                self.session.rollback()
            else:
                self.session.commit()
        except ReconciliationError as exc:
            self._abort()
            exc.with_context(sheet_name=sheet_name, row_number=row_number)
            self._fail(exc, row_data, dry_run, started)
            raise
        except SQLAlchemyError as exc:
            self._abort()
            error = RowProcessingError(
                "Internal error while processing the row; no changes were saved.",
                sheet_name=sheet_name,
                row_number=row_number,
            )
            self._log().exception(
                "Database failure on row %s of sheet '%s'",
                row_number,
                sheet_name,
                extra={"sheet_name": sheet_name, "row_number": row_number},
            )
            self._fail(error, row_data, dry_run, started, detail=str(exc))
            raise error from exc

        record_row_outcome("dry_run" if dry_run else "success", time.perf_counter() - started)
        for missing in result["suggestions"]["missingCrewMembers"]:
            record_missing_crew_member(missing["type"])
        return result

    def process_rows(self, rows: Iterable[Mapping[str, Any]], *, dry_run: bool = False) -> Dict[str, Any]:
        """Process rows in order, collecting per-row results and errors without stopping."""
        results: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        for index, payload in enumerate(rows):
            sheet_name = payload.get("sheet_name")
            row_number = payload.get("row_number", index + 1)
            try:
                results.append(self.process_row(sheet_name, payload.get("row_data"), row_number, dry_run=dry_run))
            except ReconciliationError as exc:
                errors.append(exc.to_dict())
        return {
            "processed": len(results) + len(errors),
            "succeeded": len(results),
            "failed": len(errors),
            "results": results,
            "errors": errors,
        }

    def job_name_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        """Best-effort job name of a raw payload, used to group bulk work."""
        try:
            cells = decode_row(payload.get("row_data"))
        except ValidationError:
            return None
        entries = self.column_maps.load(payload.get("sheet_name") or "")
        return transform_row(cells, entries).get(JOB_NAME_FIELD)

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #
    def _process(self, sheet_name: str, row_data: Any, row_number: Optional[int], *, dry_run: bool) -> Dict[str, Any]:
        sheet_name = (sheet_name or "").strip()
        if not sheet_name:
            raise ValidationError("`sheet_name` is required.")
        if row_data is None or row_data == "" or row_data == [] or row_data == {}:
            raise ValidationError("`row_data` is required.")

        cells = decode_row(row_data)
        entries = self.column_maps.load(sheet_name)
        if not entries:
            raise ValidationError(
                f'No column map found for sheet "{sheet_name}". Please sync the header row first.',
                http_status=404,
            )
        fields = transform_row(cells, entries)
        job_name = fields.get(JOB_NAME_FIELD)
        if not job_name:
            raise ValidationError("Row has no Job Name.")

        self._log().info(
            "Processing row %s of sheet '%s' (job '%s')",
            row_number,
            sheet_name,
            job_name,
            extra={"sheet_name": sheet_name, "row_number": row_number, "dry_run": dry_run},
        )

        branch_name = fields.get(BRANCH_FIELD) or sheet_name
        branch = self.resolver.resolve_branch(branch_name, create=not dry_run)
        branch_id = branch.id if branch is not None else None

        at_hours = parse_hours(fields.get(AT_HOURS_FIELD))
        cl_plan_hours = parse_hours(fields.get(CL_PLAN_FIELD))
        estimate, estimate_created = self._resolve_estimate(job_name, fields, branch_id, at_hours, cl_plan_hours, dry_run)

        leader = self._resolve_leader(fields, entries, cells, branch_id, dry_run)
        extraction = self.extractor.extract(
            sheet_name,
            entries,
            cells,
            branch_id=branch_id,
            leader_field=leader.column_field,
            leader_id=leader.member.id if leader.member is not None else None,
            dry_run=dry_run,
        )
        if leader.column_field is not None:
            leader.hours = extraction.leader_column_hours
        if not leader.hours and estimate is not None and estimate.crew_leader_plan_hours:
            leader.hours = float(estimate.crew_leader_plan_hours)

        missing = list(extraction.missing)
        if leader.requested_name and leader.member is None:
            missing.insert(
                0,
                {"name": leader.requested_name, "type": "crew_leader", "suggestedHours": leader.hours or 0},
            )

        job = None
        approvals: Dict[str, set] = {"regular": set(), "special": set()}
        if not dry_run:
            job, approvals = self._persist(
                job_name=job_name,
                branch=branch,
                estimate=estimate,
                leader=leader,
                extraction=extraction,
                fields=fields,
                at_hours=at_hours,
                cl_plan_hours=cl_plan_hours,
            )

        return self._build_result(
            sheet_name=sheet_name,
            row_number=row_number,
            job=job,
            job_name=job_name,
            branch=branch,
            branch_name=branch_name,
            estimate=estimate,
            estimate_created=estimate_created,
            leader=leader,
            extraction=extraction,
            missing=missing,
            approvals=approvals,
            dry_run=dry_run,
        )

    def _resolve_estimate(self, job_name, fields, branch_id, at_hours, cl_plan_hours, dry_run):
        estimate = self.resolver.resolve_estimate(job_name, branch_id)
        if estimate is not None:
            return estimate, False

        salesperson_name = fields.get(SALESPERSON_FIELD)
        person = None
        if salesperson_name:
            person = self.resolver.resolve_sales_person(salesperson_name, branch_id, link=not dry_run)
        if person is None:
            raise MissingEntityError(
                f"No estimate matches job '{job_name}' and salesperson '{salesperson_name or ''}' could not be resolved.",
                entity_type="sales_person",
                name=salesperson_name,
            )
        if dry_run:
            return Estimate(name=job_name, branch_id=branch_id, sales_person_id=person.id, attic_hours=at_hours), True

        estimate = Estimate(
            name=job_name,
            branch_id=branch_id,
            sales_person_id=person.id,
            status_id=self._status_id(EstimateStatus, ESTIMATE_STATUS_CACHE, self.sold_status_name),
            attic_hours=at_hours,
            crew_leader_plan_hours=cl_plan_hours,
        )
        self.session.add(estimate)
        self.session.flush()
        self._log().info(
            "Created stand-in estimate '%s' for salesperson '%s'",
            job_name,
            person.name,
            extra={"estimate_id": estimate.id, "sales_person_id": person.id},
        )
        return estimate, True

    def _resolve_leader(
        self,
        fields: Mapping[str, str],
        entries: Sequence[ColumnEntry],
        cells: Sequence[Any],
        branch_id: Optional[int],
        dry_run: bool,
    ) -> LeaderResolution:
        requested, _ = split_leader_label(fields.get(CREW_LEAD_FIELD))
        leader = LeaderResolution(requested_name=requested)
        if not requested:
            return leader

        prefix = normalize_name(requested)
        for entry in self._crew_columns(entries):
            if normalize_name(strip_emoji(entry.field_name)).startswith(prefix):
                leader.column_field = entry.field_name
                break

        lookup_name = strip_emoji(leader.column_field) if leader.column_field else requested
        leader.member = self.resolver.resolve_crew_member(lookup_name, branch_id, link=not dry_run)
        if leader.member is None and lookup_name != requested:
            leader.member = self.resolver.resolve_crew_member(requested, branch_id, link=not dry_run)
        return leader

    def _crew_columns(self, entries: Sequence[ColumnEntry]) -> List[ColumnEntry]:
        positions = locate_sentinels(entries)
        return [entry for entry in entries if positions.in_crew_range(entry.column_index)]

    def _persist(
        self,
        *,
        job_name: str,
        branch: Branch,
        estimate: Estimate,
        leader: LeaderResolution,
        extraction: ExtractionResult,
        fields: Mapping[str, str],
        at_hours: Optional[float],
        cl_plan_hours: Optional[float],
    ):
        job = self.session.scalars(select(Job).where(Job.name == job_name).with_for_update()).first()
        if job is None:
            job = Job(name=job_name, notification_sent=False)
            self.session.add(job)

        job.branch_id = branch.id
        job.estimate_id = estimate.id
        job.crew_leader_id = leader.member.id if leader.member is not None else None
        job.crew_leader_hours = leader.hours
        if cl_plan_hours is not None:
            job.cl_estimated_plan_hours = cl_plan_hours
        if at_hours is not None:
            job.attic_tech_hours = at_hours
        elif job.attic_tech_hours is None and estimate.attic_hours is not None:
            job.attic_tech_hours = float(estimate.attic_hours)
        note = clean_cell(fields.get(NOTES_FIELD))
        if note is not None:
            job.note = note
        finish_date = parse_finish_date(fields.get(FINISH_DATE_FIELD))
        if finish_date is not None:
            job.closing_date = finish_date
        self.session.flush()

        previous = self._approved_snapshot(job.id) if self.preserve_unchanged else None
        self.session.execute(delete(Shift).where(Shift.job_id == job.id))
        self.session.execute(delete(JobSpecialShift).where(JobSpecialShift.job_id == job.id))

        approvals: Dict[str, set] = {"regular": set(), "special": set()}
        regular = list(extraction.regular)
        if leader.member is not None and leader.hours:
            regular.insert(0, _leader_candidate(leader))

        for candidate in regular:
            approved = previous is not None and previous["regular"].get(candidate.crew_member_id) == (
                round(candidate.hours, 2),
                candidate.is_leader,
            )
            if approved:
                approvals["regular"].add(candidate.crew_member_id)
            self.session.add(
                Shift(
                    job_id=job.id,
                    crew_member_id=candidate.crew_member_id,
                    hours=candidate.hours,
                    is_leader=candidate.is_leader,
                    approved_shift=approved,
                )
            )
        for candidate in extraction.special:
            approved = previous is not None and previous["special"].get(candidate.special_shift_id) == round(
                candidate.hours, 2
            )
            if approved:
                approvals["special"].add(candidate.special_shift_id)
            self.session.add(
                JobSpecialShift(
                    job_id=job.id,
                    special_shift_id=candidate.special_shift_id,
                    hours=candidate.hours,
                    date=job.closing_date,
                    approved_shift=approved,
                )
            )

        pending = (len(regular) - len(approvals["regular"])) + (len(extraction.special) - len(approvals["special"]))
        self._reopen_if_pending(job, pending)
        self.session.flush()
        return job, approvals

    def _approved_snapshot(self, job_id: int) -> Dict[str, Dict]:
        regular = self.session.execute(
            select(Shift.crew_member_id, Shift.hours, Shift.is_leader).where(
                Shift.job_id == job_id, Shift.approved_shift.is_(True)
            )
        ).all()
        special = self.session.execute(
            select(JobSpecialShift.special_shift_id, JobSpecialShift.hours).where(
                JobSpecialShift.job_id == job_id, JobSpecialShift.approved_shift.is_(True)
            )
        ).all()
        return {
            "regular": {row.crew_member_id: (round(float(row.hours), 2), bool(row.is_leader)) for row in regular},
            "special": {row.special_shift_id: round(float(row.hours), 2) for row in special},
        }

    def _reopen_if_pending(self, job: Job, pending: int) -> None:
        closed_id = self._status_id(JobStatus, JOB_STATUS_CACHE, self.closed_status_name, create=False)
        if pending == 0 and job.status_id is not None:
            return
        if closed_id is not None and job.status_id == closed_id:
            job.notification_sent = False
            self._log().info("Re-opening closed job '%s' for review", job.name, extra={"job_id": job.id})
        job.status_id = self._status_id(JobStatus, JOB_STATUS_CACHE, self.open_status_name)

    def _status_id(self, model, cache_type: str, name: str, *, create: bool = True) -> Optional[int]:
        def load() -> Optional[int]:
            return self.session.scalar(select(model.id).where(model.name == name))

        status_id = self.cache.get_or_load(cache_type, name, load)
        if status_id is not None or not create:
            return status_id
        status = model(name=name)
        self.session.add(status)
        self.session.flush()
        self.cache.invalidate(cache_type)
        self.cache.set(cache_type, name, status.id)
        return status.id

    # ------------------------------------------------------------------ #
    # Result and failure handling
    # ------------------------------------------------------------------ #
    def _build_result(
        self,
        *,
        sheet_name,
        row_number,
        job,
        job_name,
        branch,
        branch_name,
        estimate,
        estimate_created,
        leader,
        extraction,
        missing,
        approvals,
        dry_run,
    ) -> Dict[str, Any]:
        crew_members = []
        suggested_shifts = []
        if leader.member is not None and leader.hours:
            crew_members.append({"id": leader.member.id, "hours": leader.hours, "isLeader": True})
            if leader.member.id not in approvals["regular"]:
                suggested_shifts.append(_leader_candidate(leader).as_dict())
        for candidate in extraction.regular:
            crew_members.append({"id": candidate.crew_member_id, "hours": candidate.hours, "isLeader": False})
            if candidate.crew_member_id not in approvals["regular"]:
                suggested_shifts.append(candidate.as_dict())
        suggested_special = [
            candidate.as_dict()
            for candidate in extraction.special
            if candidate.special_shift_id is None or candidate.special_shift_id not in approvals["special"]
        ]

        crew_leader = None
        if leader.member is not None:
            crew_leader = {"id": leader.member.id, "name": leader.member.name, "hours": leader.hours}

        return {
            "success": True,
            "dryRun": dry_run,
            "sheetName": sheet_name,
            "rowNumber": row_number,
            "jobId": job.id if job is not None else None,
            "jobName": job_name,
            "branch": {"id": branch.id if branch is not None else None, "name": branch.name if branch is not None else branch_name},
            "estimate": {
                "id": estimate.id,
                "name": estimate.name,
                "created": estimate_created,
            },
            "crewLeader": crew_leader,
            "crewMembers": crew_members,
            "suggestions": {
                "missingCrewMembers": missing,
                "suggestedShifts": suggested_shifts,
                "suggestedSpecialShifts": suggested_special,
                "requiresApproval": bool(missing or suggested_shifts or suggested_special),
            },
            "warnings": list(extraction.warnings),
        }

    def _abort(self) -> None:
        self.session.rollback()
        self.cache.clear()

    def _fail(self, error: ReconciliationError, row_data: Any, dry_run: bool, started: float, detail: str | None = None) -> None:
        record_row_outcome(error.error_type, time.perf_counter() - started)
        self._log().warning(
            "Row %s of sheet '%s' failed: %s",
            error.row_number,
            error.sheet_name,
            error.message,
            extra={"sheet_name": error.sheet_name, "row_number": error.row_number, "error_type": error.error_type},
        )
        if dry_run:
            return
        message = error.message if detail is None else f"{error.message} ({detail})"
        try:
            self.session.add(
                AutomationErrorLog(
                    sheet_name=error.sheet_name,
                    row_number=error.row_number if isinstance(error.row_number, int) else None,
                    error_type=error.error_type,
                    error_message=message,
                    raw_data={"row_data": row_data},
                )
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            self._log().exception("Could not record automation error for sheet '%s'", error.sheet_name)

    @staticmethod
    def _log():
        if has_app_context():
            return current_app.logger
        return logger


def _leader_candidate(leader: LeaderResolution) -> ShiftCandidate:
    return ShiftCandidate(crew_member_id=leader.member.id, name=leader.member.name, hours=leader.hours, is_leader=True)
