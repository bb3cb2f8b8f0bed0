"""
Row decoding helpers.

A sheet row reaches the service in one of three shapes: a list of cells, a
comma-delimited string, or an object keyed by column position (``{"0": ...}``)
that may also carry ``__``-prefixed automation metadata. ``decode_row`` turns
all three into one tuple of cells so nothing downstream branches on shape.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from ..errors import ValidationError

METADATA_PREFIX = "__"

Cells = Tuple[Any, ...]


def _decode_mapping(row_data: Mapping[str, Any]) -> Cells:
    positioned: Dict[int, Any] = {}
    for raw_key, value in row_data.items():
        key = str(raw_key).strip()
        if key.startswith(METADATA_PREFIX):
            continue
        try:
            index = int(key)
        except ValueError:
            continue
        if index < 0:
            continue
        positioned[index] = value

    if not positioned:
        return ()
    width = max(positioned) + 1
    return tuple(positioned.get(index) for index in range(width))


def decode_row(row_data: Any) -> Cells:
    """
    Decode any supported row shape into an ordered tuple of cell values.

    Object-shaped rows keep each value at its numeric key, so a sparse object
    leaves ``None`` gaps rather than shifting later cells left.

    Raises:
        ValidationError: when ``row_data`` is none of the supported shapes.
    """
    if isinstance(row_data, str):
        return tuple(row_data.split(","))
    if isinstance(row_data, (list, tuple)):
        return tuple(row_data)
    if isinstance(row_data, Mapping):
        return _decode_mapping(row_data)
    raise ValidationError("`row_data` must be an array, a comma-separated string, or an object keyed by column index.")


def clean_cell(value: Any) -> Optional[str]:
    """Return the trimmed string form of a cell, or None when it is blank."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def transform_row(cells: Sequence[Any], column_map: Iterable) -> Dict[str, str]:
    """
    Map positional cells onto field names.

    ``column_map`` yields objects with ``field_name`` and ``column_index``.
    Indices past the end of the row and blank cells are skipped.
    """
    fields: Dict[str, str] = {}
    for entry in column_map:
        index = entry.column_index
        if index < 0 or index >= len(cells):
            continue
        value = clean_cell(cells[index])
        if value is not None:
            fields[entry.field_name] = value
    return fields


def parse_hours(value: Any) -> Optional[float]:
    """Parse a non-negative hours cell. Blank, unparsable and negative values give None."""
    text = clean_cell(value)
    if text is None:
        return None
    try:
        hours = float(text.replace(",", ""))
    except ValueError:
        return None
    if hours != hours or hours < 0:
        return None
    return hours
