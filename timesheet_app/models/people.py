# timesheet_app/models/people.py
"""
Branches and the people attached to them (salespersons and crew members).
"""

from sqlalchemy import ForeignKey, Index

from .base import BaseModel, db


class Branch(BaseModel):
    """Operating branch. Names are a small controlled set that may grow on first sighting."""

    __tablename__ = "branch"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True, index=True)
    telegram_group_id = db.Column(db.String(50), nullable=True)

    salespersons = db.relationship("SalesPerson", secondary="sales_person_branch", back_populates="branches")
    crew_members = db.relationship("CrewMember", secondary="crew_member_branch", back_populates="branches")

    def __repr__(self):
        return f"<Branch {self.name}>"


class SalesPerson(BaseModel):
    """Salesperson owning estimates. Lookup-only from the reconciliation path."""

    __tablename__ = "sales_person"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, index=True)
    telegram_id = db.Column(db.String(50), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    branches = db.relationship("Branch", secondary="sales_person_branch", back_populates="salespersons")
    estimates = db.relationship("Estimate", back_populates="sales_person")

    def __repr__(self):
        return f"<SalesPerson {self.name}>"


class CrewMember(BaseModel):
    """Crew member who logs hours on jobs. Never created by row reconciliation."""

    __tablename__ = "crew_member"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, index=True)
    telegram_id = db.Column(db.String(50), nullable=True)
    is_leader = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    branches = db.relationship("Branch", secondary="crew_member_branch", back_populates="crew_members")
    shifts = db.relationship("Shift", back_populates="crew_member")

    def __repr__(self):
        return f"<CrewMember {self.name}>"


class SalesPersonBranch(db.Model):
    __tablename__ = "sales_person_branch"

    sales_person_id = db.Column(db.Integer, ForeignKey("sales_person.id", ondelete="CASCADE"), primary_key=True)
    branch_id = db.Column(db.Integer, ForeignKey("branch.id", ondelete="CASCADE"), primary_key=True)


class CrewMemberBranch(db.Model):
    __tablename__ = "crew_member_branch"

    crew_member_id = db.Column(db.Integer, ForeignKey("crew_member.id", ondelete="CASCADE"), primary_key=True)
    branch_id = db.Column(db.Integer, ForeignKey("branch.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (Index("idx_crew_member_branch_branch", "branch_id"),)
