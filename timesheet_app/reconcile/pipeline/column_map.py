"""
Column map persistence and sentinel detection.

A sheet header is split into ranges by three sentinel columns::

    ... | Techs hours | <crew member columns> | Unbillable Job Hours | <special shift columns> | Job Totals | ...

Header sync stores one ``SheetColumnMap`` row per kept column and tags the
crew member range; shift extraction later re-derives both ranges from the
stored field names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence

from flask import current_app, has_app_context
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from timesheet_app.models import ColumnType, SheetColumnMap, db

from ..errors import ConfigurationError, RowProcessingError, ValidationError
from .rows import METADATA_PREFIX, decode_row

TECH_HOURS_SENTINEL = "Techs hours"
UNBILLABLE_SENTINEL = "Unbillable Job Hours"
JOB_TOTALS_SENTINEL = "Job Totals"


@dataclass(frozen=True)
class ColumnEntry:
    field_name: str
    column_index: int
    type: ColumnType = ColumnType.FIELD

    def as_dict(self, sheet_name: str | None = None) -> dict:
        payload = {
            "field_name": self.field_name,
            "column_index": self.column_index,
            "type": self.type.value,
        }
        if sheet_name is not None:
            payload["sheet_name"] = sheet_name
        return payload


@dataclass(frozen=True)
class SentinelPositions:
    tech_hours: Optional[int]
    unbillable: Optional[int]
    job_totals: Optional[int]

    @property
    def consistent(self) -> bool:
        """False when the special-shift range is inverted."""
        if self.unbillable is None or self.job_totals is None:
            return True
        return self.unbillable < self.job_totals

    def in_crew_range(self, index: int) -> bool:
        if self.tech_hours is None or self.unbillable is None:
            return False
        return self.tech_hours < index < self.unbillable

    def in_special_range(self, index: int) -> bool:
        if self.unbillable is None or self.job_totals is None:
            return False
        return self.unbillable < index < self.job_totals


def _find_sentinel(entries: Sequence[ColumnEntry], sentinel: str) -> Optional[int]:
    needle = sentinel.lower()
    for entry in entries:
        if needle in entry.field_name.lower():
            return entry.column_index
    return None


def locate_sentinels(entries: Iterable[ColumnEntry]) -> SentinelPositions:
    ordered = sorted(entries, key=lambda entry: entry.column_index)
    return SentinelPositions(
        tech_hours=_find_sentinel(ordered, TECH_HOURS_SENTINEL),
        unbillable=_find_sentinel(ordered, UNBILLABLE_SENTINEL),
        job_totals=_find_sentinel(ordered, JOB_TOTALS_SENTINEL),
    )


def describe_inconsistency(sheet_name: str, positions: SentinelPositions) -> str:
    return (
        f"Column map for sheet '{sheet_name}' places '{UNBILLABLE_SENTINEL}' "
        f"(column {positions.unbillable}) after '{JOB_TOTALS_SENTINEL}' (column {positions.job_totals})."
    )


def build_entries(header_cells: Sequence[Any]) -> List[ColumnEntry]:
    """
    Turn header cells into column entries.

    Blank cells, metadata names and repeated field names are skipped; the
    first occurrence of a name keeps its column.
    """
    kept: List[ColumnEntry] = []
    seen = set()
    for index, cell in enumerate(header_cells):
        if not isinstance(cell, str):
            continue
        name = cell.strip()
        if not name or name.startswith(METADATA_PREFIX) or name in seen:
            continue
        seen.add(name)
        kept.append(ColumnEntry(field_name=name, column_index=index))

    positions = locate_sentinels(kept)
    return [
        ColumnEntry(
            field_name=entry.field_name,
            column_index=entry.column_index,
            type=ColumnType.CREW_MEMBER if positions.in_crew_range(entry.column_index) else ColumnType.FIELD,
        )
        for entry in kept
    ]


class ColumnMapStore:
    """Load and replace the stored column layout of a sheet."""

    def __init__(self, session=None, *, strict_sentinels: bool | None = None) -> None:
        self.session = session or db.session
        if strict_sentinels is None:
            strict_sentinels = bool(current_app.config.get("RECON_STRICT_SENTINELS", False)) if has_app_context() else False
        self.strict_sentinels = strict_sentinels

    def load(self, sheet_name: str) -> List[ColumnEntry]:
        rows = self.session.scalars(
            select(SheetColumnMap)
            .where(SheetColumnMap.sheet_name == sheet_name)
            .order_by(SheetColumnMap.column_index.asc())
        ).all()
        return [ColumnEntry(field_name=row.field_name, column_index=row.column_index, type=row.type) for row in rows]

    def sync_header(self, sheet_name: str, header_row: Any, *, dry_run: bool = False) -> dict:
        """
        Replace the sheet's column map with the given header.

        Raises:
            ValidationError: missing sheet name or no usable header cells.
            ConfigurationError: inverted sentinels while strict mode is on.
        """
        sheet_name = (sheet_name or "").strip()
        if not sheet_name:
            raise ValidationError("`sheet_name` is required.")
        entries = build_entries(decode_row(header_row))
        if not entries:
            raise ValidationError("No valid columns to sync.", sheet_name=sheet_name)

        positions = locate_sentinels(entries)
        if not positions.consistent and self.strict_sentinels:
            raise ConfigurationError(describe_inconsistency(sheet_name, positions), sheet_name=sheet_name)

        records = [entry.as_dict(sheet_name) for entry in entries]
        summary = {
            "success": True,
            "sheetName": sheet_name,
            "dryRun": dry_run,
            "processedRecords": len(records),
            "crewMemberColumns": sum(1 for entry in entries if entry.type is ColumnType.CREW_MEMBER),
            "sentinelsConsistent": positions.consistent,
        }
        if dry_run:
            summary["syncedRecords"] = 0
            summary["dataThatWouldBeSaved"] = records
            return summary

        try:
            self.session.execute(delete(SheetColumnMap).where(SheetColumnMap.sheet_name == sheet_name))
            self.session.add_all(
                SheetColumnMap(
                    sheet_name=sheet_name,
                    field_name=entry.field_name,
                    column_index=entry.column_index,
                    type=entry.type,
                )
                for entry in entries
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise RowProcessingError(
                f"Failed to sync column map for sheet '{sheet_name}'.", sheet_name=sheet_name
            ) from exc

        if has_app_context():
            current_app.logger.info(
                "Synced %s columns for sheet '%s'",
                len(records),
                sheet_name,
                extra={"sheet_name": sheet_name, "column_count": len(records)},
            )
        summary["syncedRecords"] = len(records)
        return summary
