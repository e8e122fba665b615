"""
Audit Service Exceptions

Error taxonomy for the consumption path and the query path.
"""

from typing import Any


class AuditServiceError(Exception):
    """Base exception for audit service errors."""

    def __init__(
        self,
        message: str,
        event_id: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.event_id = event_id
        self.cause = cause


class BrokerConnectionError(AuditServiceError):
    """Raised when the message bus cannot be reached or the session is lost."""


class TopologyError(AuditServiceError):
    """Raised when exchanges, queues or bindings cannot be declared."""


class EventDecodeError(AuditServiceError):
    """Raised when a delivery body is not a valid event message."""


class NormalizationError(AuditServiceError):
    """Raised when an event cannot be turned into an audit entry."""


class PersistenceError(AuditServiceError):
    """Raised when an audit entry cannot be written to storage."""


class QueryError(AuditServiceError):
    """Raised when a query against the audit store fails."""


class InvalidQueryError(QueryError):
    """Raised when query filters or paging arguments are invalid."""

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.errors = errors or []


class AuditLogNotFoundError(QueryError):
    """Raised when an audit entry does not exist."""

    def __init__(self, entry_id: str):
        super().__init__(f"Audit log entry not found: {entry_id}")
        self.entry_id = entry_id


class ExportError(AuditServiceError):
    """Raised when an export cannot be rendered or written."""
