"""
Severity assignment.

A pure lookup keyed by (event type, success). Pairs missing from the table
fall back to the success severity escalated one level for failures, and to
``low`` for unknown successful events.
"""

from ..audit.schemas import Severity

LOW, MEDIUM, HIGH, CRITICAL = Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL

EVENT_ALIASES = {
    "user.created": "user.user.created",
    "user.updated": "user.user.updated",
    "user.deleted": "user.user.deleted",
}

SEVERITY_TABLE: dict[tuple[str, bool], Severity] = {
    # auth
    ("auth.user.registered", True): MEDIUM,
    ("auth.login", True): MEDIUM,
    ("auth.login", False): HIGH,
    ("auth.email.verification.requested", True): LOW,
    ("auth.password.reset.requested", True): HIGH,
    ("auth.password.reset.completed", True): CRITICAL,
    ("auth.account.reactivation.requested", True): MEDIUM,
    # user
    ("user.user.created", True): MEDIUM,
    ("user.user.updated", True): LOW,
    ("user.user.deleted", True): CRITICAL,
    ("user.email.verified", True): MEDIUM,
    ("user.password.changed", True): HIGH,
    # order / payment
    ("order.placed", True): MEDIUM,
    ("order.cancelled", True): MEDIUM,
    ("order.delivered", True): LOW,
    ("payment.received", True): HIGH,
    ("payment.failed", False): CRITICAL,
    # product
    ("product.created", True): MEDIUM,
    ("product.updated", True): LOW,
    ("product.deleted", True): HIGH,
    ("product.price.changed", True): MEDIUM,
    # cart
    ("cart.item.added", True): LOW,
    ("cart.item.removed", True): LOW,
    ("cart.cleared", True): MEDIUM,
    ("cart.abandoned", True): LOW,
    # inventory
    ("inventory.stock.updated", True): MEDIUM,
    ("inventory.restock", True): MEDIUM,
    ("inventory.low.stock.alert", True): HIGH,
    ("inventory.reserved", True): MEDIUM,
    # review
    ("review.created", True): LOW,
    ("review.updated", True): LOW,
    ("review.deleted", True): MEDIUM,
    ("review.moderated", True): MEDIUM,
    ("review.flagged", True): HIGH,
    # notification
    ("notification.sent", True): LOW,
    ("notification.delivered", True): LOW,
    ("notification.failed", False): MEDIUM,
    ("notification.opened", True): LOW,
    # admin
    ("admin.action.performed", True): HIGH,
    ("admin.user.created", True): HIGH,
    ("admin.config.changed", True): CRITICAL,
}


def canonical_event_type(event_type: str) -> str:
    return EVENT_ALIASES.get(event_type, event_type)


def severity_for(event_type: str, success: bool = True) -> Severity:
    """Deterministic severity for an (event type, outcome) pair."""
    event_type = canonical_event_type(event_type)
    severity = SEVERITY_TABLE.get((event_type, success))
    if severity is not None:
        return severity
    base = SEVERITY_TABLE.get((event_type, True), LOW)
    return base if success else base.escalate()
