"""
Audit entry schemas, storage, queries and exports.
"""

from .export import CSV_HEADER, render_csv, render_export, render_json, write_export
from .models import AuditLogRecord, Base
from .pagination import Pagination, calculate_pagination
from .query import AuditQueryService
from .recorder import AuditRecorder
from .schemas import (
    AuditLogCreate,
    AuditLogEntry,
    AuditSearchParams,
    AuditSearchResult,
    AuditStatistics,
    ExportFormat,
    Severity,
    SortField,
    SortOrder,
    UserType,
)
from .store import AuditStore, create_engine

__all__ = [
    "AuditLogCreate",
    "AuditLogEntry",
    "AuditLogRecord",
    "AuditQueryService",
    "AuditRecorder",
    "AuditSearchParams",
    "AuditSearchResult",
    "AuditStatistics",
    "AuditStore",
    "Base",
    "CSV_HEADER",
    "ExportFormat",
    "Pagination",
    "Severity",
    "SortField",
    "SortOrder",
    "UserType",
    "calculate_pagination",
    "create_engine",
    "render_csv",
    "render_export",
    "render_json",
    "write_export",
]
