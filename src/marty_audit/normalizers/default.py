"""Fallback for event types nothing else claims."""

from ..audit.schemas import AuditLogCreate
from ..messaging.core import EventMessage
from .base import action_type_for, build_entry, failure_reason, first_present

UNMAPPED_TAG = "unmapped-event"


def normalize_unmapped(event: EventMessage) -> AuditLogCreate:
    """Minimal entry so no consumed event goes unrecorded."""
    data = event.data
    success = data.get("success") is not False
    resource_type = event.event_type.split(".", 1)[0] or "unknown"
    return build_entry(
        event,
        action_type=action_type_for(event.event_type) or "UNKNOWN",
        resource_type=resource_type,
        resource_id=first_present(data, "resourceId", "id") or event.event_id,
        user_id=data.get("userId"),
        default_service=event.source or "unknown",
        success=success,
        error_message=None if success else failure_reason(data),
        compliance_tags=[UNMAPPED_TAG],
    )
