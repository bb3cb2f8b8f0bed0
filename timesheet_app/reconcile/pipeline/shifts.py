"""
Shift candidate extraction.

Regular crew columns sit between the "Techs hours" and "Unbillable Job Hours"
sentinels, special shift columns between "Unbillable Job Hours" and
"Job Totals". Each non-zero hours cell becomes a candidate.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select

from timesheet_app.models import SpecialShift

from ..errors import ConfigurationError
from .cache import LookupCache
from .column_map import ColumnEntry, describe_inconsistency, locate_sentinels
from .matching import normalize_name
from .resolver import EntityResolver
from .rows import parse_hours

SPECIAL_SHIFT_CACHE = "special_shift"

_INVISIBLE = {"\u200d", "\ufe0f", "\ufe0e"}
_WHITESPACE_RE = re.compile(r"\s+")


def strip_emoji(text: str) -> str:
    """Drop pictographs and their joiners from a header, then collapse whitespace."""
    kept = [
        char
        for char in text
        if char not in _INVISIBLE and unicodedata.category(char) not in ("So", "Sk", "Cs", "Co")
    ]
    return _WHITESPACE_RE.sub(" ", "".join(kept)).strip()


@dataclass
class ShiftCandidate:
    crew_member_id: int
    name: str
    hours: float
    is_leader: bool = False

    def as_dict(self) -> dict:
        return {"id": self.crew_member_id, "name": self.name, "hours": self.hours, "isLeader": self.is_leader}


@dataclass
class SpecialShiftCandidate:
    special_shift_id: Optional[int]
    name: str
    hours: float

    def as_dict(self) -> dict:
        return {"specialShiftId": self.special_shift_id, "name": self.name, "hours": self.hours}


@dataclass
class ExtractionResult:
    regular: List[ShiftCandidate] = field(default_factory=list)
    special: List[SpecialShiftCandidate] = field(default_factory=list)
    missing: List[dict] = field(default_factory=list)
    leader_column_hours: Optional[float] = None
    warnings: List[str] = field(default_factory=list)
    used_allow_list: bool = False


class ShiftExtractor:
    def __init__(
        self,
        resolver: EntityResolver,
        cache: LookupCache | None = None,
        *,
        special_shift_names: Sequence[str] = (),
        strict_sentinels: bool = False,
    ) -> None:
        self.resolver = resolver
        self.session = resolver.session
        self.cache = cache if cache is not None else resolver.cache
        self.special_shift_names = {normalize_name(name) for name in special_shift_names}
        self.strict_sentinels = strict_sentinels

    def extract(
        self,
        sheet_name: str,
        entries: Sequence[ColumnEntry],
        cells: Sequence[Any],
        *,
        branch_id: Optional[int] = None,
        leader_field: Optional[str] = None,
        leader_id: Optional[int] = None,
        dry_run: bool = False,
    ) -> ExtractionResult:
        """
        Build shift candidates for one row.

        ``leader_field`` is the crew column that belongs to the row's crew
        leader; its hours are reported separately and it never yields a
        regular candidate.

        Raises:
            ConfigurationError: inverted special-shift range in strict mode.
        """
        result = ExtractionResult()
        positions = locate_sentinels(entries)

        if positions.consistent:
            special_columns = [entry for entry in entries if positions.in_special_range(entry.column_index)]
        elif self.strict_sentinels:
            raise ConfigurationError(describe_inconsistency(sheet_name, positions), sheet_name=sheet_name)
        else:
            special_columns = [
                entry for entry in entries if normalize_name(strip_emoji(entry.field_name)) in self.special_shift_names
            ]
            result.used_allow_list = True
            result.warnings.append(
                describe_inconsistency(sheet_name, positions) + " Special shifts were matched by name instead."
            )

        excluded = {positions.unbillable, positions.job_totals} | {entry.column_index for entry in special_columns}
        regular_columns = [
            entry
            for entry in entries
            if positions.in_crew_range(entry.column_index) and entry.column_index not in excluded
        ]

        self._extract_regular(result, regular_columns, cells, branch_id, leader_field, leader_id, dry_run)
        self._extract_special(result, special_columns, cells, dry_run)
        return result

    # ------------------------------------------------------------------ #
    def _extract_regular(
        self,
        result: ExtractionResult,
        columns: Sequence[ColumnEntry],
        cells: Sequence[Any],
        branch_id: Optional[int],
        leader_field: Optional[str],
        leader_id: Optional[int],
        dry_run: bool,
    ) -> None:
        by_member: Dict[int, ShiftCandidate] = {}
        for entry in columns:
            hours = _cell_hours(cells, entry.column_index)
            if entry.field_name == leader_field:
                result.leader_column_hours = hours
                continue
            if not hours:
                continue

            display_name = strip_emoji(entry.field_name)
            member = self.resolver.resolve_crew_member(display_name, branch_id, link=not dry_run)
            if member is None:
                result.missing.append({"name": display_name, "type": "crew_member", "suggestedHours": hours})
                continue
            if leader_id is not None and member.id == leader_id:
                result.warnings.append(f"Column '{entry.field_name}' resolved to the crew leader and was skipped.")
                continue

            existing = by_member.get(member.id)
            if existing is not None:
                existing.hours += hours
            else:
                by_member[member.id] = ShiftCandidate(crew_member_id=member.id, name=member.name, hours=hours)
        result.regular.extend(by_member.values())

    def _extract_special(
        self,
        result: ExtractionResult,
        columns: Sequence[ColumnEntry],
        cells: Sequence[Any],
        dry_run: bool,
    ) -> None:
        by_name: Dict[str, SpecialShiftCandidate] = {}
        for entry in columns:
            hours = _cell_hours(cells, entry.column_index)
            if not hours:
                continue
            name = strip_emoji(entry.field_name)
            key = normalize_name(name)
            if key in by_name:
                by_name[key].hours += hours
                continue
            special_id = self._special_shift_id(name, create=not dry_run)
            by_name[key] = SpecialShiftCandidate(special_shift_id=special_id, name=name, hours=hours)
        result.special.extend(by_name.values())

    def _special_shift_id(self, name: str, *, create: bool) -> Optional[int]:
        key = normalize_name(name)

        def load() -> Optional[int]:
            for special in self.session.scalars(select(SpecialShift)):
                if normalize_name(special.name) == key:
                    return special.id
            return None

        special_id = self.cache.get_or_load(SPECIAL_SHIFT_CACHE, key, load)
        if special_id is not None or not create:
            return special_id

        special = SpecialShift(name=name)
        self.session.add(special)
        self.session.flush()
        self.cache.invalidate(SPECIAL_SHIFT_CACHE)
        self.cache.set(SPECIAL_SHIFT_CACHE, key, special.id)
        return special.id


def _cell_hours(cells: Sequence[Any], index: int) -> Optional[float]:
    if index >= len(cells):
        return None
    return parse_hours(cells[index])


def split_leader_label(value: Optional[str]) -> Tuple[Optional[str], bool]:
    """Strip an optional ``Crew Lead:`` label; returns (name, had_label)."""
    if not value:
        return None, False
    text = value.strip()
    match = re.match(r"(?i)^crew\s*lead(?:er)?\s*:\s*", text)
    if match:
        return text[match.end():].strip() or None, True
    return text, False
