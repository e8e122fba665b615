"""Inventory events."""

from ..audit.schemas import AuditLogCreate, UserType
from ..messaging.core import EventMessage
from .base import build_entry, first_present, normalizer, pick

SERVICE = "inventory-service"


def _stock_id(data):
    return first_present(data, "productId", "sku")


@normalizer("inventory.stock.updated")
def stock_updated(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="INVENTORY_STOCK_UPDATED",
        resource_type="inventory",
        resource_id=_stock_id(data),
        user_id=data.get("updatedBy"),
        user_type=UserType.ADMIN if data.get("updatedBy") else UserType.SYSTEM,
        default_service=SERVICE,
        compliance_tags=["inventory", "stock-management"],
        context=pick(data, "sku", "previousQuantity", "newQuantity", "reason"),
    )


@normalizer("inventory.restock")
def restock(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="INVENTORY_RESTOCK",
        resource_type="inventory",
        resource_id=_stock_id(data),
        user_id=data.get("restockedBy"),
        user_type=UserType.ADMIN if data.get("restockedBy") else UserType.SYSTEM,
        default_service=SERVICE,
        compliance_tags=["inventory", "stock-management", "supply-chain"],
        context=pick(data, "sku", "quantity", "supplier"),
    )


@normalizer("inventory.low.stock.alert")
def low_stock_alert(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="INVENTORY_LOW_STOCK_ALERT",
        resource_type="inventory",
        resource_id=_stock_id(data),
        user_type=UserType.SYSTEM,
        default_service=SERVICE,
        compliance_tags=["inventory", "alert"],
        context=pick(data, "sku", "currentQuantity", "threshold"),
    )


@normalizer("inventory.reserved")
def reserved(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="INVENTORY_RESERVED",
        resource_type="inventory",
        resource_id=_stock_id(data),
        user_id=first_present(data, "reservedBy", "userId"),
        default_service=SERVICE,
        compliance_tags=["inventory", "reservation", "order"],
        context=pick(data, "sku", "quantity", "orderId", "expiresAt"),
    )
