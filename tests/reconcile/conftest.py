from __future__ import annotations

import pytest

from timesheet_app.models import Branch, CrewMember, Job, JobSpecialShift, JobStatus, Shift, SpecialShift, db


@pytest.fixture
def job_factory(app):
    """Create a job with suggested or approved shifts directly in the database."""

    def _factory(
        name: str = "Job 1",
        *,
        branch_name: str = "Kent",
        shifts=(),
        special_shifts=(),
        status: str | None = "Uploading Shifts",
        attic_tech_hours: float | None = 40,
        closing_date=None,
    ) -> Job:
        branch = db.session.query(Branch).filter_by(name=branch_name).first()
        if branch is None:
            branch = Branch(name=branch_name)
            db.session.add(branch)
            db.session.flush()
        status_row = None
        if status is not None:
            status_row = db.session.query(JobStatus).filter_by(name=status).first()
            if status_row is None:
                status_row = JobStatus(name=status)
                db.session.add(status_row)
                db.session.flush()

        job = Job(
            name=name,
            branch_id=branch.id,
            status_id=status_row.id if status_row else None,
            attic_tech_hours=attic_tech_hours,
            closing_date=closing_date,
        )
        db.session.add(job)
        db.session.flush()

        for member_name, hours, approved in shifts:
            member = db.session.query(CrewMember).filter_by(name=member_name).first()
            if member is None:
                member = CrewMember(name=member_name)
                db.session.add(member)
                db.session.flush()
            db.session.add(Shift(job_id=job.id, crew_member_id=member.id, hours=hours, approved_shift=approved))

        for special_name, hours, approved in special_shifts:
            special = db.session.query(SpecialShift).filter_by(name=special_name).first()
            if special is None:
                special = SpecialShift(name=special_name)
                db.session.add(special)
                db.session.flush()
            db.session.add(
                JobSpecialShift(job_id=job.id, special_shift_id=special.id, hours=hours, approved_shift=approved)
            )
        db.session.commit()
        return job

    return _factory


@pytest.fixture
def status_of(app):
    """Return the current status name of a job, reloading it first."""

    def _status(job_id: int) -> str | None:
        db.session.expire_all()
        job = db.session.get(Job, job_id)
        if job is None or job.status_id is None:
            return None
        return db.session.get(JobStatus, job.status_id).name

    return _status
