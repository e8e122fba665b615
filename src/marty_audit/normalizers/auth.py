"""Authentication events."""

from ..audit.schemas import AuditLogCreate
from ..messaging.core import EventMessage
from .base import build_entry, failure_reason, first_present, normalizer, pick

SERVICE = "auth-service"


@normalizer("auth.user.registered", security=True)
def user_registered(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="USER_REGISTERED",
        resource_type="user",
        resource_id=data.get("userId"),
        user_id=data.get("userId"),
        default_service=SERVICE,
        compliance_tags=["auth", "user-registration", "user-activity", "security"],
        context={
            **pick(data, "email", "firstName", "lastName"),
            "registeredAt": data.get("registeredAt") or event.timestamp.isoformat(),
        },
    )


@normalizer("auth.login", security=True)
def user_login(event: EventMessage) -> AuditLogCreate:
    data = event.data
    success = data.get("success") is not False
    return build_entry(
        event,
        action_type="USER_LOGIN",
        resource_type="auth",
        resource_id=data.get("userId"),
        user_id=data.get("userId"),
        default_service=SERVICE,
        success=success,
        error_message=None if success else failure_reason(data) or "Login failed",
        compliance_tags=["auth", "login", "user-activity", "security"],
        context={
            "email": data.get("email"),
            "loginMethod": data.get("loginMethod") or "password",
        },
    )


@normalizer("auth.email.verification.requested", security=True)
def email_verification_requested(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="EMAIL_VERIFICATION_REQUESTED",
        resource_type="email",
        resource_id=data.get("email"),
        user_id=data.get("userId"),
        default_service=SERVICE,
        compliance_tags=["auth", "email-verification", "user-activity"],
        context={
            "expiresAt": data.get("expiresAt"),
            # the link itself is a bearer credential
            "verificationUrl": "provided" if data.get("verificationUrl") else "not-provided",
        },
    )


@normalizer("auth.password.reset.requested", security=True)
def password_reset_requested(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="PASSWORD_RESET_REQUESTED",
        resource_type="auth",
        resource_id=data.get("userId"),
        user_id=data.get("userId"),
        default_service=SERVICE,
        ip_address=first_present(data, "requestIp", "ipAddress"),
        compliance_tags=["auth", "password-reset", "security", "user-activity"],
        context=pick(data, "email", "expiresAt"),
    )


@normalizer("auth.password.reset.completed", security=True)
def password_reset_completed(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="PASSWORD_RESET_COMPLETED",
        resource_type="auth",
        resource_id=data.get("userId"),
        user_id=data.get("userId"),
        default_service=SERVICE,
        ip_address=first_present(data, "changedIp", "ipAddress"),
        compliance_tags=["auth", "password-reset", "security", "user-activity"],
        context=pick(data, "email", "changedAt"),
    )


@normalizer("auth.account.reactivation.requested", security=True)
def account_reactivation_requested(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="ACCOUNT_REACTIVATION_REQUESTED",
        resource_type="user",
        resource_id=data.get("userId"),
        user_id=data.get("userId"),
        default_service=SERVICE,
        compliance_tags=["auth", "account-reactivation", "user-activity"],
        context=pick(data, "email", "expiresAt"),
    )
