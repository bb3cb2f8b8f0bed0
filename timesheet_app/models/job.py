# timesheet_app/models/job.py
"""
Estimates, jobs and the shift rows that hang off a job.

Shift and JobSpecialShift rows carry an ``approved_shift`` flag. A row with
``approved_shift=False`` is a suggestion awaiting review; rejecting it deletes
the row outright.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db

Hours = db.Numeric(10, 2, asdecimal=False)


class EstimateStatus(BaseModel):
    __tablename__ = "estimate_status"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(100), nullable=False, unique=True)


class Estimate(BaseModel):
    """Estimate synced from the CRM. The reconciler only creates minimal stand-ins."""

    __tablename__ = "estimate"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey("branch.id"), nullable=True, index=True)
    sales_person_id: Mapped[int | None] = mapped_column(ForeignKey("sales_person.id"), nullable=True)
    status_id: Mapped[int | None] = mapped_column(ForeignKey("estimate_status.id"), nullable=True)
    attic_hours: Mapped[float | None] = mapped_column(Hours, nullable=True)
    crew_leader_plan_hours: Mapped[float | None] = mapped_column(Hours, nullable=True)

    branch = relationship("Branch")
    sales_person = relationship("SalesPerson", back_populates="estimates")
    status = relationship("EstimateStatus")
    jobs = relationship("Job", back_populates="estimate")

    def __repr__(self):
        return f"<Estimate {self.name}>"


class JobStatus(BaseModel):
    __tablename__ = "job_status"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(100), nullable=False, unique=True)


class Job(BaseModel):
    """A job, matched across rows by its unique name."""

    __tablename__ = "job"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False, unique=True, index=True)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey("branch.id"), nullable=True, index=True)
    estimate_id: Mapped[int | None] = mapped_column(ForeignKey("estimate.id"), nullable=True)
    crew_leader_id: Mapped[int | None] = mapped_column(ForeignKey("crew_member.id"), nullable=True)
    crew_leader_hours: Mapped[float | None] = mapped_column(Hours, nullable=True)
    cl_estimated_plan_hours: Mapped[float | None] = mapped_column(Hours, nullable=True)
    attic_tech_hours: Mapped[float | None] = mapped_column(Hours, nullable=True)
    note: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    closing_date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    status_id: Mapped[int | None] = mapped_column(ForeignKey("job_status.id"), nullable=True, index=True)
    notification_sent: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    branch = relationship("Branch")
    estimate = relationship("Estimate", back_populates="jobs")
    crew_leader = relationship("CrewMember")
    status = relationship("JobStatus")
    shifts = relationship(
        "Shift",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    special_shifts = relationship(
        "JobSpecialShift",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Job {self.name}>"


class SpecialShift(BaseModel):
    """Named special shift type (QC, visits, delivery). Auto-created on first sighting."""

    __tablename__ = "special_shift"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(100), nullable=False, unique=True)


class Shift(BaseModel):
    __tablename__ = "shift"

    job_id: Mapped[int] = mapped_column(ForeignKey("job.id", ondelete="CASCADE"), primary_key=True)
    crew_member_id: Mapped[int] = mapped_column(ForeignKey("crew_member.id"), primary_key=True)
    hours: Mapped[float] = mapped_column(Hours, nullable=False)
    is_leader: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    approved_shift: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    job = relationship("Job", back_populates="shifts")
    crew_member = relationship("CrewMember", back_populates="shifts")

    __table_args__ = (Index("idx_shift_pending", "approved_shift", "job_id"),)


class JobSpecialShift(BaseModel):
    __tablename__ = "job_special_shift"

    job_id: Mapped[int] = mapped_column(ForeignKey("job.id", ondelete="CASCADE"), primary_key=True)
    special_shift_id: Mapped[int] = mapped_column(ForeignKey("special_shift.id"), primary_key=True)
    hours: Mapped[float] = mapped_column(Hours, nullable=False)
    date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    approved_shift: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    job = relationship("Job", back_populates="special_shifts")
    special_shift = relationship("SpecialShift")

    __table_args__ = (Index("idx_job_special_shift_pending", "approved_shift", "job_id"),)
