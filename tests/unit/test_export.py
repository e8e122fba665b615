"""Unit tests for export rendering and atomic export files."""

import csv
import io
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from marty_audit.audit.export import (
    CSV_HEADER,
    blank_nulls,
    format_timestamp,
    render_csv,
    render_json,
    write_export,
)
from marty_audit.audit.schemas import AuditLogEntry
from marty_audit.exceptions import ExportError

STAMP = datetime(2026, 1, 15, 12, 0, 0, 123456, tzinfo=timezone.utc)


@pytest.fixture
def entries(make_entry):
    def build(**overrides):
        entry = make_entry(**overrides)
        return AuditLogEntry(
            **entry.model_dump(),
            id=f"id-{entry.event_id}",
            retention_until=STAMP,
            created_at=STAMP,
            updated_at=STAMP,
        )

    return [
        build(event_id="1", occurred_at=STAMP),
        build(event_id="2", user_id=None, resource_id=None, success=False, error_message="boom"),
        build(event_id="3", service_name="a,b", action_type='SAY "HI"'),
    ]


@pytest.mark.unit
class TestCsv:
    """Test suite for CSV exports."""

    def test_header_and_columns(self, entries):
        rows = list(csv.reader(io.StringIO(render_csv(entries))))

        assert tuple(rows[0]) == CSV_HEADER
        assert rows[0] == [
            "ID",
            "Timestamp",
            "Action",
            "Resource Type",
            "Resource ID",
            "User ID",
            "Service",
            "Success",
            "Severity",
        ]
        assert rows[1] == [
            "id-1",
            "2026-01-15T12:00:00.123Z",
            "ORDER_PLACED",
            "order",
            "o1",
            "u1",
            "order-service",
            "true",
            "medium",
        ]

    def test_missing_values_are_empty_strings(self, entries):
        rows = list(csv.reader(io.StringIO(render_csv(entries))))

        assert rows[2][4] == ""
        assert rows[2][5] == ""
        assert rows[2][7] == "false"
        assert "None" not in render_csv(entries)

    def test_values_are_quoted(self, entries):
        rows = list(csv.reader(io.StringIO(render_csv(entries))))

        assert rows[3][6] == "a,b"
        assert rows[3][2] == 'SAY "HI"'

    def test_empty_export_has_header_only(self):
        assert render_csv([]).splitlines() == [",".join(CSV_HEADER)]


@pytest.mark.unit
class TestJson:
    """Test suite for JSON exports."""

    def test_document_shape(self, entries):
        payload = json.loads(render_json(entries, exported_at=STAMP))

        assert set(payload) == {"data", "exported_at", "total"}
        assert payload["total"] == 3
        assert payload["exported_at"] == "2026-01-15T12:00:00.123Z"
        assert payload["data"][0]["id"] == "id-1"
        assert payload["data"][0]["occurred_at"] == "2026-01-15T12:00:00.123Z"

    def test_never_contains_null(self, entries):
        text = render_json(entries)
        payload = json.loads(text)

        assert "null" not in text
        assert payload["data"][1]["user_id"] == ""
        assert payload["data"][1]["session_id"] == ""
        assert payload["data"][1]["error_message"] == "boom"

    def test_blank_nulls_is_recursive(self):
        assert blank_nulls({"a": None, "b": [None, {"c": None}], "d": 0}) == {
            "a": "",
            "b": ["", {"c": ""}],
            "d": 0,
        }


@pytest.mark.unit
def test_format_timestamp_treats_naive_as_utc():
    assert format_timestamp(datetime(2026, 1, 1, 8, 30)) == "2026-01-01T08:30:00.000Z"


@pytest.mark.unit
@pytest.mark.asyncio
class TestWriteExport:
    """Test suite for write_export."""

    async def test_writes_content(self, tmp_path: Path):
        target = tmp_path / "audit.csv"

        result = await write_export(target, "a,b\n1,2\n")

        assert result == target
        assert target.read_text(encoding="utf-8") == "a,b\n1,2\n"
        assert [path.name for path in tmp_path.iterdir()] == ["audit.csv"]

    async def test_replaces_existing_file(self, tmp_path: Path):
        target = tmp_path / "audit.json"
        target.write_text("old", encoding="utf-8")

        await write_export(target, "new")

        assert target.read_text(encoding="utf-8") == "new"

    async def test_missing_directory_leaves_nothing_behind(self, tmp_path: Path):
        target = tmp_path / "missing" / "audit.csv"

        with pytest.raises(ExportError):
            await write_export(target, "data")

        assert not target.exists()
        assert list(tmp_path.iterdir()) == []
