"""Turns normalizer functions into dispatcher handlers."""

import logging
from collections.abc import Callable

from pydantic import ValidationError

from ..exceptions import NormalizationError, PersistenceError
from ..messaging.core import EventMessage
from ..messaging.dispatcher import EventHandler
from ..observability import metrics
from ..observability.logging import AuditLogger
from .schemas import AuditLogCreate, AuditLogEntry
from .store import AuditStore

logger = logging.getLogger(__name__)

Normalizer = Callable[[EventMessage], AuditLogCreate]


class AuditRecorder:
    """Normalize, emit the audit channel log, persist; errors propagate to the consumer."""

    def __init__(self, store: AuditStore, audit_logger: AuditLogger | None = None):
        self.store = store
        self.audit_logger = audit_logger or AuditLogger()

    def handler_for(self, normalize: Normalizer, security: bool = False) -> EventHandler:
        async def handle(event: EventMessage) -> AuditLogEntry:
            return await self.record(event, normalize, security=security)

        handle.__name__ = f"handle_{getattr(normalize, '__name__', 'event')}"
        return handle

    async def record(
        self, event: EventMessage, normalize: Normalizer, security: bool = False
    ) -> AuditLogEntry:
        try:
            entry = normalize(event)
        except NormalizationError:
            raise
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            raise NormalizationError(
                f"Cannot normalize {event.event_type} event: {e}", event_id=event.event_id, cause=e
            ) from e

        self._emit(entry, security or not entry.success)

        try:
            stored = await self.store.record(entry)
        except PersistenceError as e:
            self.audit_logger.data_loss(
                str(e),
                event_id=event.event_id,
                action_type=entry.action_type,
                resource_type=entry.resource_type,
                resource_id=entry.resource_id,
                service_name=entry.service_name,
            )
            raise

        metrics.record_persisted(stored.resource_type, stored.severity.value)
        logger.debug(f"Recorded audit entry {stored.id} for event {event.event_id}")
        return stored

    def _emit(self, entry: AuditLogCreate, security: bool) -> None:
        fields = {
            "action_type": entry.action_type,
            "resource_type": entry.resource_type,
            "resource_id": entry.resource_id,
            "user_id": entry.user_id,
            "service_name": entry.service_name,
            "severity": entry.severity.value,
            "success": entry.success,
            "context": entry.event_data.get("context", {}),
        }
        if entry.error_message:
            fields["error_message"] = entry.error_message
        if security:
            self.audit_logger.security(entry.event_type, **fields)
        else:
            self.audit_logger.business(entry.event_type, **fields)
