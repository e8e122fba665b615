"""Logging, metrics and health reporting."""

from .health import HealthStatus
from .logging import AuditLogger, bind_event_context, configure_logging, sanitize

__all__ = [
    "AuditLogger",
    "HealthStatus",
    "bind_event_context",
    "configure_logging",
    "sanitize",
]
