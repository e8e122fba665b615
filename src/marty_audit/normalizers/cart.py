"""Shopping cart events."""

from ..audit.schemas import AuditLogCreate, UserType
from ..messaging.core import EventMessage
from .base import build_entry, first_present, normalizer, pick

SERVICE = "cart-service"


def _cart_entry(event: EventMessage, action_type: str, tags: list[str], context) -> AuditLogCreate:
    data = event.data
    user_id = data.get("userId")
    return build_entry(
        event,
        action_type=action_type,
        resource_type="cart",
        resource_id=first_present(data, "cartId", "userId"),
        user_id=user_id,
        user_type=UserType.CUSTOMER if user_id else UserType.GUEST,
        default_service=SERVICE,
        compliance_tags=["cart", *tags],
        context=context,
    )


@normalizer("cart.item.added")
def item_added(event: EventMessage) -> AuditLogCreate:
    return _cart_entry(
        event, "CART_ITEM_ADDED", ["user-activity"], pick(event.data, "productId", "quantity", "price")
    )


@normalizer("cart.item.removed")
def item_removed(event: EventMessage) -> AuditLogCreate:
    return _cart_entry(
        event, "CART_ITEM_REMOVED", ["user-activity"], pick(event.data, "productId", "quantity")
    )


@normalizer("cart.cleared")
def cart_cleared(event: EventMessage) -> AuditLogCreate:
    return _cart_entry(
        event, "CART_CLEARED", ["user-activity"], pick(event.data, "itemCount", "reason")
    )


@normalizer("cart.abandoned")
def cart_abandoned(event: EventMessage) -> AuditLogCreate:
    return _cart_entry(
        event,
        "CART_ABANDONED",
        ["user-activity", "analytics"],
        pick(event.data, "itemCount", "totalValue", "lastActivityAt"),
    )
