"""Tests for row decoding and positional field mapping."""

import pytest

from timesheet_app.reconcile.errors import ValidationError
from timesheet_app.reconcile.pipeline.column_map import ColumnEntry
from timesheet_app.reconcile.pipeline.rows import decode_row, parse_hours, transform_row

COLUMNS = [
    ColumnEntry("Job Name", 0),
    ColumnEntry("Crew Lead", 1),
    ColumnEntry("Hours", 2),
    ColumnEntry("Notes", 7),
]


def test_decode_list_keeps_cells():
    assert decode_row(["Job A", "Alice", 8]) == ("Job A", "Alice", 8)


def test_decode_comma_string():
    assert decode_row("Job A,Alice,8") == ("Job A", "Alice", "8")


def test_decode_object_drops_metadata_and_orders_by_key():
    row = {"2": "8", "__IMTINDEX__": 5, "0": "Job A", "1": "Alice", "__ROW_NUMBER__": 12}
    assert decode_row(row) == ("Job A", "Alice", "8")


def test_decode_sparse_object_keeps_positions():
    assert decode_row({"0": "Job A", "3": "x"}) == ("Job A", None, None, "x")


@pytest.mark.parametrize("payload", [42, None, 3.5])
def test_decode_rejects_unsupported_shapes(payload):
    with pytest.raises(ValidationError):
        decode_row(payload)


def test_transform_skips_blank_and_out_of_range_cells():
    fields = transform_row(("  Job A ", "   ", 8), COLUMNS)
    assert fields == {"Job Name": "Job A", "Hours": "8"}


def test_transform_trims_values():
    fields = transform_row((" Job B", " Crew Lead: Bob "), COLUMNS)
    assert fields["Crew Lead"] == "Crew Lead: Bob"


@pytest.mark.parametrize(
    "raw, expected",
    [("8", 8.0), (" 2.5 ", 2.5), ("1,200", 1200.0), ("", None), ("abc", None), ("-3", None), (None, None), (0, 0.0)],
)
def test_parse_hours(raw, expected):
    assert parse_hours(raw) == expected
