"""Administrative events. All of them go to the security channel."""

from ..audit.schemas import AuditLogCreate, UserType
from ..messaging.core import EventMessage
from .base import build_entry, first_present, normalizer, pick

SERVICE = "admin-service"


@normalizer("admin.action.performed", security=True)
def action_performed(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="ADMIN_ACTION_PERFORMED",
        resource_type=data.get("resourceType") or "admin",
        resource_id=first_present(data, "resourceId", "targetId"),
        user_id=first_present(data, "adminId", "performedBy"),
        user_type=UserType.ADMIN,
        default_service=SERVICE,
        compliance_tags=["admin", "privileged-access", "security"],
        context=pick(data, "action", "description", "changes"),
    )


@normalizer("admin.user.created", security=True)
def admin_user_created(event: EventMessage) -> AuditLogCreate:
    data = event.data
    # temporaryPassword stays out of the business context
    return build_entry(
        event,
        action_type="ADMIN_USER_CREATED",
        resource_type="user",
        resource_id=first_present(data, "userId", "newUserId"),
        user_id=first_present(data, "createdBy", "adminId"),
        user_type=UserType.ADMIN,
        default_service=SERVICE,
        compliance_tags=["admin", "user-management", "privileged-access", "security"],
        context=pick(data, "email", "role", "permissions"),
    )


@normalizer("admin.config.changed", security=True)
def config_changed(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="ADMIN_CONFIG_CHANGED",
        resource_type="configuration",
        resource_id=first_present(data, "configKey", "component"),
        user_id=first_present(data, "changedBy", "adminId"),
        user_type=UserType.ADMIN,
        default_service=SERVICE,
        compliance_tags=["admin", "configuration", "change-management", "security"],
        context=pick(data, "component", "oldValue", "newValue"),
    )
