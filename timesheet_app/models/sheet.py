# timesheet_app/models/sheet.py
"""
Per-sheet column layout and the diagnostics trail for failed rows.
"""

from __future__ import annotations

import enum

from sqlalchemy import Enum, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db


class ColumnType(str, enum.Enum):
    """Kind of a mapped sheet column."""

    FIELD = "field"
    CREW_MEMBER = "crew_member"


class ErrorLogStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class SheetColumnMap(BaseModel):
    """One column of a sheet header. Replaced wholesale whenever the header changes."""

    __tablename__ = "sheet_column_map"

    id: Mapped[int] = mapped_column(primary_key=True)
    sheet_name: Mapped[str] = mapped_column(db.String(100), nullable=False, index=True)
    field_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    column_index: Mapped[int] = mapped_column(db.Integer, nullable=False)
    type: Mapped[ColumnType] = mapped_column(
        Enum(ColumnType, name="sheet_column_type_enum"),
        nullable=False,
        default=ColumnType.FIELD,
    )

    __table_args__ = (
        UniqueConstraint("sheet_name", "column_index", name="uq_sheet_column_map_position"),
    )


class AutomationErrorLog(BaseModel):
    """A row that failed reconciliation, kept for operator diagnosis."""

    __tablename__ = "automation_error_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    sheet_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    row_number: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    error_type: Mapped[str] = mapped_column(db.String(100), nullable=False)
    error_message: Mapped[str] = mapped_column(db.Text, nullable=False)
    raw_data: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    status: Mapped[ErrorLogStatus] = mapped_column(
        Enum(ErrorLogStatus, name="automation_error_status_enum"),
        nullable=False,
        default=ErrorLogStatus.PENDING,
    )

    __table_args__ = (Index("idx_automation_error_log_sheet_row", "sheet_name", "row_number"),)
