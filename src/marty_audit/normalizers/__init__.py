"""
Per-domain normalizers.

Importing this package registers every domain module's normalizers.
``build_dispatcher`` turns the registry into an EventDispatcher whose
default handler records unmapped events.
"""

from ..audit.recorder import AuditRecorder
from ..messaging.dispatcher import EventDispatcher
from . import admin, auth, cart, commerce, inventory, notification, product, review, user  # noqa: F401
from .base import RegisteredNormalizer, normalizer, registered_normalizers
from .default import UNMAPPED_TAG, normalize_unmapped
from .severity import SEVERITY_TABLE, canonical_event_type, severity_for


def register_normalizers(dispatcher: EventDispatcher, recorder: AuditRecorder) -> list[str]:
    """Register a recording handler per known event type; returns the registered types."""
    registered = registered_normalizers()
    for event_type, entry in registered.items():
        dispatcher.register(event_type, recorder.handler_for(entry.normalize, security=entry.security))
    return sorted(registered)


def build_dispatcher(recorder: AuditRecorder) -> EventDispatcher:
    dispatcher = EventDispatcher(default_handler=recorder.handler_for(normalize_unmapped))
    register_normalizers(dispatcher, recorder)
    return dispatcher


__all__ = [
    "RegisteredNormalizer",
    "SEVERITY_TABLE",
    "UNMAPPED_TAG",
    "build_dispatcher",
    "canonical_event_type",
    "normalize_unmapped",
    "normalizer",
    "register_normalizers",
    "registered_normalizers",
    "severity_for",
]
