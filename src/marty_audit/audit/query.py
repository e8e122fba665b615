"""
Operator-facing query API over the audit store.

Validates raw filters, converts pages to offsets and turns missing entries and
bad arguments into typed errors. Storage failures surface as QueryError.
"""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..exceptions import AuditLogNotFoundError, InvalidQueryError
from .export import render_export, write_export
from .pagination import offset_for_page
from .schemas import (
    AuditLogEntry,
    AuditSearchParams,
    AuditSearchResult,
    AuditStatistics,
    ExportFormat,
    SortOrder,
)
from .store import AuditStore

logger = logging.getLogger(__name__)


class AuditQueryService:
    """Search, trail, export and statistics for operators."""

    def __init__(self, store: AuditStore, default_limit: int = 100, max_limit: int = 1000):
        self.store = store
        self.default_limit = default_limit
        self.max_limit = max_limit

    def build_params(self, filters: Mapping[str, Any] | None = None) -> AuditSearchParams:
        """Validate camelCase or snake_case filters; a ``page`` key becomes an offset."""
        values = {key: value for key, value in (filters or {}).items() if value is not None}
        page = values.pop("page", None)
        values.setdefault("limit", self.default_limit)

        try:
            limit = int(values["limit"])
        except (TypeError, ValueError) as e:
            raise InvalidQueryError(f"limit must be an integer, got {values['limit']!r}") from e
        if limit > self.max_limit:
            raise InvalidQueryError(f"limit must be between 1 and {self.max_limit}")

        if page is not None:
            if "offset" in values:
                raise InvalidQueryError("Pass either page or offset, not both")
            try:
                values["offset"] = offset_for_page(int(page), limit)
            except (TypeError, ValueError) as e:
                raise InvalidQueryError(f"Invalid page: {page!r}") from e

        try:
            return AuditSearchParams.model_validate(values)
        except ValidationError as e:
            raise InvalidQueryError(
                f"Invalid search filters: {_summarize(e)}",
                errors=e.errors(include_url=False),
                cause=e,
            ) from e

    async def get_entry(self, entry_id: str) -> AuditLogEntry:
        if not entry_id:
            raise InvalidQueryError("Entry id is required")
        entry = await self.store.get_by_id(entry_id)
        if entry is None:
            raise AuditLogNotFoundError(entry_id)
        return entry

    async def search(self, filters: Mapping[str, Any] | None = None) -> AuditSearchResult:
        return await self.store.search(self.build_params(filters))

    async def resource_trail(
        self,
        resource_type: str,
        resource_id: str,
        sort_order: str = "asc",
        page: int = 1,
        limit: int | None = None,
    ) -> AuditSearchResult:
        if not resource_type or not resource_id:
            raise InvalidQueryError("resource_type and resource_id are required")
        params = self.build_params(
            {
                "resource_type": resource_type,
                "resource_id": resource_id,
                "sort_order": sort_order,
                "page": page,
                "limit": limit,
            }
        )
        return await self.store.resource_trail(
            params.resource_type,
            params.resource_id,
            sort_order=SortOrder(params.sort_order),
            limit=params.limit,
            offset=params.offset,
        )

    async def correlation_trail(self, correlation_id: str) -> list[AuditLogEntry]:
        if not correlation_id or not correlation_id.strip():
            raise InvalidQueryError("correlation_id is required")
        return await self.store.correlation_trail(correlation_id.strip())

    async def statistics(self, days: int = 30) -> AuditStatistics:
        if days < 1:
            raise InvalidQueryError("days must be at least 1")
        return await self.store.statistics(days=days)

    async def recent_failures(self, hours: int = 24, limit: int = 100) -> list[AuditLogEntry]:
        if hours < 1:
            raise InvalidQueryError("hours must be at least 1")
        if not 1 <= limit <= self.max_limit:
            raise InvalidQueryError(f"limit must be between 1 and {self.max_limit}")
        return await self.store.recent_failures(hours=hours, limit=limit)

    async def export(
        self, filters: Mapping[str, Any] | None = None, fmt: ExportFormat | str = ExportFormat.CSV
    ) -> tuple[str, int]:
        """Render the full export in memory; returns (content, row count)."""
        export_format = _export_format(fmt)
        params = self.build_params(filters)
        entries = await self.store.export_entries(params)
        logger.info(f"Exporting {len(entries)} audit entries as {export_format.value}")
        return render_export(entries, export_format), len(entries)

    async def export_to_file(
        self,
        path: str | Path,
        filters: Mapping[str, Any] | None = None,
        fmt: ExportFormat | str = ExportFormat.CSV,
    ) -> int:
        content, count = await self.export(filters, fmt)
        await write_export(path, content)
        return count


def _export_format(fmt: ExportFormat | str) -> ExportFormat:
    try:
        return ExportFormat(fmt.lower() if isinstance(fmt, str) else fmt)
    except ValueError as e:
        raise InvalidQueryError(f"Unsupported export format: {fmt}") from e


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors(include_url=False):
        location = ".".join(str(part) for part in item["loc"]) or "filters"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)
