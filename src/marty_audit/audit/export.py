"""Rendering of audit exports and atomic export files."""

import csv
import io
import json
import os
import uuid
from contextlib import suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles

from ..exceptions import ExportError
from .schemas import AuditLogEntry, ExportFormat

CSV_HEADER = (
    "ID",
    "Timestamp",
    "Action",
    "Resource Type",
    "Resource ID",
    "User ID",
    "Service",
    "Success",
    "Severity",
)

CONTENT_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
}


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def csv_row(entry: AuditLogEntry) -> list[str]:
    return [
        entry.id,
        format_timestamp(entry.occurred_at),
        entry.action_type,
        entry.resource_type,
        _text(entry.resource_id),
        _text(entry.user_id),
        entry.service_name,
        "true" if entry.success else "false",
        entry.severity.value,
    ]


def render_csv(entries: list[AuditLogEntry]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for entry in entries:
        writer.writerow(csv_row(entry))
    return buffer.getvalue()


def blank_nulls(value: Any) -> Any:
    """Replace None with "" at every depth."""
    if value is None:
        return ""
    if isinstance(value, dict):
        return {key: blank_nulls(item) for key, item in value.items()}
    if isinstance(value, list):
        return [blank_nulls(item) for item in value]
    return value


def export_document(entry: AuditLogEntry) -> dict[str, Any]:
    document = entry.model_dump(mode="json")
    for key in ("occurred_at", "retention_until", "created_at", "updated_at"):
        document[key] = format_timestamp(getattr(entry, key))
    return blank_nulls(document)


def render_json(entries: list[AuditLogEntry], exported_at: datetime | None = None) -> str:
    exported_at = exported_at or datetime.now(timezone.utc)
    payload = {
        "data": [export_document(entry) for entry in entries],
        "exported_at": format_timestamp(exported_at),
        "total": len(entries),
    }
    return json.dumps(payload, indent=2)


def render_export(entries: list[AuditLogEntry], fmt: ExportFormat) -> str:
    if fmt is ExportFormat.CSV:
        return render_csv(entries)
    return render_json(entries)


async def write_export(path: str | Path, content: str) -> Path:
    """Write content to path atomically: either the whole file appears or nothing does."""
    target = Path(path)
    temp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
    try:
        async with aiofiles.open(temp_path, "w", encoding="utf-8", newline="") as handle:
            await handle.write(content)
            await handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    except OSError as e:
        with suppress(FileNotFoundError):
            os.unlink(temp_path)
        raise ExportError(f"Failed to write export to {target}: {e}", cause=e) from e
    return target
