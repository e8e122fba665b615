"""
Normalizer registration and shared field extraction.

A normalizer is a pure function from an EventMessage to an AuditLogCreate.
Modules register them with the ``normalizer`` decorator; the service turns
the registry into dispatcher handlers.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from ..audit.schemas import AuditLogCreate, Severity, UserType
from ..messaging.core import EventMessage
from .severity import severity_for

Normalizer = Callable[[EventMessage], AuditLogCreate]


@dataclass(frozen=True)
class RegisteredNormalizer:
    event_type: str
    normalize: Normalizer
    security: bool = False


_REGISTRY: dict[str, RegisteredNormalizer] = {}


def normalizer(*event_types: str, security: bool = False) -> Callable[[Normalizer], Normalizer]:
    """Register the decorated function for each event type.

    ``security`` routes the parallel log line to the security channel;
    failed outcomes always go there regardless.
    """

    def decorator(func: Normalizer) -> Normalizer:
        for event_type in event_types:
            _REGISTRY[event_type] = RegisteredNormalizer(event_type, func, security)
        return func

    return decorator


def registered_normalizers() -> dict[str, RegisteredNormalizer]:
    return dict(_REGISTRY)


def first_present(data: Mapping[str, Any], *keys: str) -> Any:
    """First value among keys that is neither missing, None nor an empty string."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def failure_reason(data: Mapping[str, Any]) -> str | None:
    reason = first_present(data, "errorMessage", "reason", "error")
    return str(reason) if reason is not None else None


def resolve_user_type(value: Any, default: UserType = UserType.CUSTOMER) -> UserType:
    if isinstance(value, str):
        try:
            return UserType(value.lower())
        except ValueError:
            return default
    return default


def action_type_for(event_type: str) -> str:
    """``foo.bar.baz`` becomes ``FOO_BAR_BAZ``."""
    return "_".join(part for part in event_type.replace("-", "_").upper().split(".") if part)


def event_data(event: EventMessage, context: Mapping[str, Any] | None = None) -> dict[str, Any]:
    return {
        "eventId": event.event_id,
        "eventType": event.event_type,
        "timestamp": event.timestamp.isoformat(),
        "source": event.source,
        "version": event.metadata.version,
        "context": {key: value for key, value in (context or {}).items() if value is not None},
        "data": dict(event.data),
    }


def build_entry(
    event: EventMessage,
    *,
    action_type: str,
    resource_type: str,
    resource_id: Any,
    default_service: str,
    compliance_tags: Iterable[str],
    user_id: Any = None,
    user_type: UserType = UserType.CUSTOMER,
    success: bool = True,
    error_message: str | None = None,
    ip_address: Any = None,
    context: Mapping[str, Any] | None = None,
    severity: Severity | None = None,
) -> AuditLogCreate:
    data = event.data
    if ip_address is None:
        ip_address = first_present(data, "ipAddress", "ip")
    return AuditLogCreate(
        event_id=event.event_id,
        event_type=event.event_type,
        action_type=action_type,
        service_name=event.source or default_service,
        resource_type=resource_type,
        resource_id=resource_id,
        user_id=user_id,
        user_type=user_type,
        session_id=first_present(data, "sessionId"),
        correlation_id=event.correlation_id,
        ip_address=ip_address,
        user_agent=first_present(data, "userAgent"),
        event_data=event_data(event, context),
        severity=severity or severity_for(event.event_type, success),
        compliance_tags=list(compliance_tags),
        success=success,
        error_message=error_message,
        occurred_at=event.timestamp,
    )


def pick(data: Mapping[str, Any], *keys: str) -> dict[str, Any]:
    """Subset of data for the business context."""
    return {key: data.get(key) for key in keys}
