"""Product catalogue events."""

from ..audit.schemas import AuditLogCreate, UserType
from ..messaging.core import EventMessage
from .base import build_entry, first_present, normalizer, pick

SERVICE = "product-service"


def _product_id(data):
    return first_present(data, "productId", "id")


@normalizer("product.created")
def product_created(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="PRODUCT_CREATED",
        resource_type="product",
        resource_id=_product_id(data),
        user_id=data.get("createdBy"),
        user_type=UserType.ADMIN,
        default_service=SERVICE,
        compliance_tags=["product", "catalog", "inventory-management"],
        context=pick(data, "name", "sku", "price", "category"),
    )


@normalizer("product.updated")
def product_updated(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="PRODUCT_UPDATED",
        resource_type="product",
        resource_id=_product_id(data),
        user_id=data.get("updatedBy"),
        user_type=UserType.ADMIN,
        default_service=SERVICE,
        compliance_tags=["product", "catalog"],
        context={
            "name": data.get("name"),
            "updatedFields": data.get("updatedFields") or data.get("changes"),
        },
    )


@normalizer("product.deleted", security=True)
def product_deleted(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="PRODUCT_DELETED",
        resource_type="product",
        resource_id=_product_id(data),
        user_id=data.get("deletedBy"),
        user_type=UserType.ADMIN,
        default_service=SERVICE,
        compliance_tags=["product", "catalog", "deletion"],
        context=pick(data, "name", "sku", "reason"),
    )


@normalizer("product.price.changed")
def price_changed(event: EventMessage) -> AuditLogCreate:
    data = event.data
    return build_entry(
        event,
        action_type="PRODUCT_PRICE_CHANGED",
        resource_type="product",
        resource_id=_product_id(data),
        user_id=data.get("changedBy"),
        user_type=UserType.ADMIN,
        default_service=SERVICE,
        compliance_tags=["product", "pricing", "financial"],
        context=pick(data, "oldPrice", "newPrice", "currency"),
    )
