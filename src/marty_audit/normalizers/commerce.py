"""Order and payment events."""

from collections.abc import Mapping
from typing import Any

from ..audit.schemas import AuditLogCreate
from ..messaging.core import EventMessage
from .base import build_entry, failure_reason, first_present, normalizer, pick

ORDER_SERVICE = "order-service"
PAYMENT_SERVICE = "payment-service"


def _order_id(data: Mapping[str, Any]) -> Any:
    return first_present(data, "orderId", "resourceId")


def _item_count(data: Mapping[str, Any]) -> int | None:
    count = data.get("itemCount")
    if count is not None:
        return count
    items = data.get("items")
    return len(items) if isinstance(items, list) else None


@normalizer("order.placed")
def order_placed(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="ORDER_PLACED",
        resource_type="order",
        resource_id=_order_id(data),
        user_id=first_present(data, "userId", "customerId"),
        default_service=ORDER_SERVICE,
        compliance_tags=["order", "transaction", "financial"],
        context={
            "orderNumber": data.get("orderNumber"),
            "orderTotal": first_present(data, "orderTotal", "totalAmount", "total"),
            "itemCount": _item_count(data),
            "currency": data.get("currency"),
            "paymentMethod": data.get("paymentMethod"),
        },
    )


@normalizer("order.cancelled")
def order_cancelled(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="ORDER_CANCELLED",
        resource_type="order",
        resource_id=_order_id(data),
        user_id=first_present(data, "userId", "customerId"),
        default_service=ORDER_SERVICE,
        compliance_tags=["order", "transaction", "cancellation"],
        context=pick(data, "orderNumber", "cancelledBy", "reason", "refundAmount"),
    )


@normalizer("order.delivered")
def order_delivered(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="ORDER_DELIVERED",
        resource_type="order",
        resource_id=_order_id(data),
        user_id=first_present(data, "userId", "customerId"),
        default_service=ORDER_SERVICE,
        compliance_tags=["order", "fulfillment"],
        context=pick(data, "orderNumber", "deliveredAt", "trackingNumber"),
    )


@normalizer("payment.received")
def payment_received(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="PAYMENT_RECEIVED",
        resource_type="payment",
        resource_id=first_present(data, "paymentId", "resourceId"),
        user_id=first_present(data, "userId", "customerId"),
        default_service=PAYMENT_SERVICE,
        compliance_tags=["payment", "transaction", "financial", "pci"],
        context=pick(data, "orderId", "amount", "currency", "paymentMethod", "transactionId"),
    )


@normalizer("payment.failed")
def payment_failed(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="PAYMENT_FAILED",
        resource_type="payment",
        resource_id=first_present(data, "paymentId", "resourceId"),
        user_id=first_present(data, "userId", "customerId"),
        default_service=PAYMENT_SERVICE,
        success=False,
        error_message=failure_reason(data) or "Payment failed",
        compliance_tags=["payment", "transaction", "financial", "pci", "failure"],
        context=pick(data, "orderId", "amount", "currency", "paymentMethod", "errorCode"),
    )
