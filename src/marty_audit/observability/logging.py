"""Structured logging configuration and audit log channels."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import structlog

REDACTED = "[REDACTED]"
SENSITIVE_MARKERS = ("password", "token", "secret")
SENSITIVE_SUFFIXES = ("apikey", "privatekey", "accesskey")


def configure_logging(service_name: str, log_level: str, log_format: str = "json") -> None:
    """Configure stdlib logging + structlog for the service."""

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_service_name(service_name),
    ]

    if log_format == "console":
        renderers: list[structlog.types.Processor] = [structlog.dev.ConsoleRenderer()]
    else:
        renderers = [
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=[*shared_processors, *renderers],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level)
        ),
        cache_logger_on_first_use=True,
    )

    # stdlib loggers share the pipeline so their records carry the bound correlation fields
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[structlog.stdlib.add_logger_name, *shared_processors],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *renderers,
            ],
        )
    )
    logging.basicConfig(
        handlers=[handler],
        level=logging.getLevelName(log_level),
        force=True,
    )


def _add_service_name(service_name: str) -> structlog.types.Processor:
    def processor(logger: structlog.stdlib.BoundLogger, name: str, event: Any) -> Any:
        if isinstance(event, dict):
            event.setdefault("service", service_name)
        return event

    return processor


@contextmanager
def bind_event_context(
    correlation_id: str, event_id: str, event_type: str
) -> Iterator[None]:
    """Bind correlation fields to every log line emitted while handling one event."""
    with structlog.contextvars.bound_contextvars(
        correlation_id=correlation_id, event_id=event_id, event_type=event_type
    ):
        yield


def sanitize(value: Any) -> Any:
    """Recursively mask values whose key looks like a credential."""
    if isinstance(value, Mapping):
        return {
            key: REDACTED if _is_sensitive(key) else sanitize(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize(item) for item in value]
    return value


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower().replace("_", "").replace("-", "")
    if lowered.endswith(SENSITIVE_SUFFIXES):
        return True
    return any(marker in lowered for marker in SENSITIVE_MARKERS)


class AuditLogger:
    """
    Emits the business and security audit channels.

    These records are informational and run alongside persistence; the audit
    store stays the system of record.
    """

    def __init__(self, logger: Any | None = None):
        self._logger = logger or structlog.get_logger("marty_audit.audit")

    def business(self, action: str, **fields: Any) -> None:
        self._logger.info(
            "audit.business", action=action, audit_channel="business", **sanitize(fields)
        )

    def security(self, action: str, **fields: Any) -> None:
        self._logger.warning(
            "audit.security", action=action, audit_channel="security", **sanitize(fields)
        )

    def data_loss(self, message: str, **fields: Any) -> None:
        """Report an audit entry that could not be persisted."""
        self._logger.critical(
            "audit.persistence.failed",
            detail=message,
            audit_channel="data_loss",
            **sanitize(fields),
        )
