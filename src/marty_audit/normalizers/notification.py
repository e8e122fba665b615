"""Notification delivery events."""

from ..audit.schemas import AuditLogCreate
from ..messaging.core import EventMessage
from .base import build_entry, failure_reason, first_present, normalizer, pick

SERVICE = "notification-service"


def _notification_entry(event: EventMessage, action_type: str, tags, context, **kwargs) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type=action_type,
        resource_type="notification",
        resource_id=first_present(data, "notificationId", "id"),
        user_id=first_present(data, "userId", "recipientId"),
        default_service=SERVICE,
        compliance_tags=["notification", "communication", *tags],
        context=context,
        **kwargs,
    )


@normalizer("notification.sent")
def notification_sent(event: EventMessage) -> AuditLogCreate:
    return _notification_entry(
        event, "NOTIFICATION_SENT", [], pick(event.data, "channel", "template", "subject")
    )


@normalizer("notification.delivered")
def notification_delivered(event: EventMessage) -> AuditLogCreate:
    return _notification_entry(
        event, "NOTIFICATION_DELIVERED", ["delivery"], pick(event.data, "channel", "deliveredAt")
    )


@normalizer("notification.failed")
def notification_failed(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return _notification_entry(
        event,
        "NOTIFICATION_FAILED",
        ["delivery", "failure"],
        pick(data, "channel", "attempts"),
        success=False,
        error_message=failure_reason(data) or "Notification delivery failed",
    )


@normalizer("notification.opened")
def notification_opened(event: EventMessage) -> AuditLogCreate:
    return _notification_entry(
        event, "NOTIFICATION_OPENED", ["engagement"], pick(event.data, "channel", "openedAt")
    )
