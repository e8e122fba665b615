"""User profile events."""

from ..audit.schemas import AuditLogCreate
from ..messaging.core import EventMessage
from .base import build_entry, first_present, normalizer, pick, resolve_user_type

SERVICE = "user-service"


@normalizer("user.user.created", "user.created")
def user_created(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="USER_CREATED",
        resource_type="user",
        resource_id=first_present(data, "userId", "id"),
        user_id=first_present(data, "userId", "id"),
        user_type=resolve_user_type(data.get("role")),
        default_service=SERVICE,
        compliance_tags=["user", "user-management", "account-creation"],
        context=pick(data, "email", "firstName", "lastName", "role"),
    )


@normalizer("user.user.updated", "user.updated")
def user_updated(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="USER_UPDATED",
        resource_type="user",
        resource_id=first_present(data, "userId", "id"),
        user_id=first_present(data, "updatedBy", "userId", "id"),
        user_type=resolve_user_type(data.get("role")),
        default_service=SERVICE,
        compliance_tags=["user", "user-management", "profile-update"],
        context={
            "updatedFields": data.get("updatedFields") or data.get("changes"),
            "email": data.get("email"),
        },
    )


@normalizer("user.user.deleted", "user.deleted", security=True)
def user_deleted(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="USER_DELETED",
        resource_type="user",
        resource_id=first_present(data, "userId", "id"),
        user_id=first_present(data, "deletedBy", "userId", "id"),
        user_type=resolve_user_type(data.get("role")),
        default_service=SERVICE,
        compliance_tags=["user", "user-management", "account-deletion", "data-retention"],
        context=pick(data, "email", "reason"),
    )


@normalizer("user.email.verified")
def email_verified(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="EMAIL_VERIFIED",
        resource_type="email",
        resource_id=data.get("email"),
        user_id=data.get("userId"),
        default_service=SERVICE,
        compliance_tags=["user", "email-verification"],
        context=pick(data, "verifiedAt"),
    )


@normalizer("user.password.changed", security=True)
def password_changed(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="PASSWORD_CHANGED",
        resource_type="auth",
        resource_id=data.get("userId"),
        user_id=data.get("userId"),
        default_service=SERVICE,
        compliance_tags=["user", "password-change", "security"],
        context=pick(data, "changedAt"),
    )
