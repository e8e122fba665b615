"""Product review events."""

from ..audit.schemas import AuditLogCreate, UserType
from ..messaging.core import EventMessage
from .base import build_entry, first_present, normalizer, pick

SERVICE = "review-service"


def _review_id(data):
    return first_present(data, "reviewId", "id")


@normalizer("review.created")
def review_created(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="REVIEW_CREATED",
        resource_type="review",
        resource_id=_review_id(data),
        user_id=first_present(data, "userId", "createdBy"),
        default_service=SERVICE,
        compliance_tags=["review", "user-content"],
        context=pick(data, "productId", "rating", "title"),
    )


@normalizer("review.updated")
def review_updated(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="REVIEW_UPDATED",
        resource_type="review",
        resource_id=_review_id(data),
        user_id=first_present(data, "userId", "updatedBy"),
        default_service=SERVICE,
        compliance_tags=["review", "user-content"],
        context={
            "productId": data.get("productId"),
            "rating": data.get("rating"),
            "updatedFields": data.get("updatedFields") or data.get("changes"),
        },
    )


@normalizer("review.deleted", security=True)
def review_deleted(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="REVIEW_DELETED",
        resource_type="review",
        resource_id=_review_id(data),
        user_id=first_present(data, "deletedBy", "userId"),
        default_service=SERVICE,
        compliance_tags=["review", "user-content", "deletion"],
        context=pick(data, "productId", "reason"),
    )


@normalizer("review.moderated")
def review_moderated(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="REVIEW_MODERATED",
        resource_type="review",
        resource_id=_review_id(data),
        user_id=data.get("moderatedBy"),
        user_type=UserType.ADMIN,
        default_service=SERVICE,
        compliance_tags=["review", "moderation", "content-policy"],
        context=pick(data, "productId", "status", "decision", "reason"),
    )


@normalizer("review.flagged", security=True)
def review_flagged(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="REVIEW_FLAGGED",
        resource_type="review",
        resource_id=_review_id(data),
        user_id=data.get("flaggedBy"),
        default_service=SERVICE,
        compliance_tags=["review", "moderation", "content-policy", "flagged"],
        context=pick(data, "productId", "reason"),
    )
