# timesheet_app/models/__init__.py

from .base import BaseModel, db
from .job import Estimate, EstimateStatus, Job, JobSpecialShift, JobStatus, Shift, SpecialShift
from .people import Branch, CrewMember, CrewMemberBranch, SalesPerson, SalesPersonBranch
from .sheet import AutomationErrorLog, ColumnType, ErrorLogStatus, SheetColumnMap

__all__ = [
    "db",
    "BaseModel",
    "AutomationErrorLog",
    "Branch",
    "ColumnType",
    "CrewMember",
    "CrewMemberBranch",
    "ErrorLogStatus",
    "Estimate",
    "EstimateStatus",
    "Job",
    "JobSpecialShift",
    "JobStatus",
    "SalesPerson",
    "SalesPersonBranch",
    "SheetColumnMap",
    "Shift",
    "SpecialShift",
]
