"""Pydantic schemas for audit entries, queries and reports."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    """Audit severity levels, ordered."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def escalate(self) -> Severity:
        return _SEVERITY_ORDER[min(self.rank + 1, len(_SEVERITY_ORDER) - 1)]


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class UserType(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"
    GUEST = "guest"


class SortField(str, Enum):
    OCCURRED_AT = "occurred_at"
    SEVERITY = "severity"
    SERVICE_NAME = "service_name"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuditLogCreate(BaseModel):
    """A normalized audit entry ready to be persisted."""

    model_config = ConfigDict(str_strip_whitespace=True)

    event_id: str | None = None
    event_type: str = Field(min_length=1)
    action_type: str = Field(min_length=1)
    service_name: str = Field(min_length=1)
    resource_type: str = Field(min_length=1)
    resource_id: str | None = None
    user_id: str | None = None
    user_type: UserType = UserType.CUSTOMER
    session_id: str | None = None
    correlation_id: str = "unknown"
    ip_address: str | None = None
    user_agent: str | None = None
    event_data: dict[str, Any] = Field(default_factory=dict)
    severity: Severity
    compliance_tags: list[str] = Field(default_factory=list)
    success: bool = True
    error_message: str | None = None
    occurred_at: datetime

    @field_validator("resource_id", "user_id", "session_id", "ip_address", mode="before")
    @classmethod
    def _stringify_identifier(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value or None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("compliance_tags")
    @classmethod
    def _unique_tags(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(tag for tag in value if tag))

    @field_validator("occurred_at")
    @classmethod
    def _occurred_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class AuditLogEntry(AuditLogCreate):
    """A persisted audit entry."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    retention_until: datetime
    created_at: datetime
    updated_at: datetime

    @field_validator("retention_until", "created_at", "updated_at")
    @classmethod
    def _timestamps_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


_SORT_ALIASES = {
    "occurredAt": SortField.OCCURRED_AT.value,
    "serviceName": SortField.SERVICE_NAME.value,
}


class AuditSearchParams(BaseModel):
    """Equality filters, date range, paging and ordering for a search."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid", str_strip_whitespace=True
    )

    service_name: str | None = None
    action_type: str | None = None
    event_type: str | None = None
    user_id: str | None = None
    user_type: UserType | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    correlation_id: str | None = None
    success: bool | None = None
    severity: Severity | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    sort_by: SortField = SortField.OCCURRED_AT
    sort_order: SortOrder = SortOrder.DESC

    @field_validator("sort_by", mode="before")
    @classmethod
    def _accept_camel_sort_field(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _SORT_ALIASES.get(value, value)
        return value

    @field_validator("sort_order", mode="before")
    @classmethod
    def _lower_sort_order(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("from_date", "to_date")
    @classmethod
    def _dates_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_date_range(self) -> AuditSearchParams:
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("from_date must not be after to_date")
        return self


class AuditSearchResult(BaseModel):
    entries: list[AuditLogEntry]
    total: int
    limit: int
    offset: int
    page: int
    total_pages: int
    has_more: bool


class CountBucket(BaseModel):
    name: str
    count: int


class TimeRange(BaseModel):
    start: datetime
    end: datetime
    days: int


class AuditStatistics(BaseModel):
    """Aggregate counts over a trailing window."""

    total_logs: int
    successful: int
    failed: int
    top_services: list[CountBucket]
    top_actions: list[CountBucket]
    severity_breakdown: dict[str, int]
    time_range: TimeRange
