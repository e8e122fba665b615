"""Event type to handler registry."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .core import EventMessage

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventMessage], Awaitable[Any]]

WILDCARD = "*"


class EventDispatcher:
    """
    Routes each event to exactly one handler.

    Lookup order is the exact event type, then the ``*`` handler, then the
    default handler, so no event type is ever dropped.
    """

    def __init__(self, default_handler: EventHandler):
        self._handlers: dict[str, EventHandler] = {}
        self._default_handler = default_handler

    def register(self, event_type: str, handler: EventHandler) -> None:
        """Register handler for event_type; a later registration replaces an earlier one."""
        if event_type in self._handlers:
            logger.warning(f"Replacing handler for event type: {event_type}")
        self._handlers[event_type] = handler
        logger.info(f"Registered handler for event type: {event_type}")

    def unregister(self, event_type: str) -> None:
        if self._handlers.pop(event_type, None) is not None:
            logger.info(f"Unregistered handler for event type: {event_type}")

    def resolve(self, event_type: str) -> EventHandler:
        handler = self._handlers.get(event_type)
        if handler is not None:
            return handler
        handler = self._handlers.get(WILDCARD)
        if handler is not None:
            return handler
        return self._default_handler

    async def dispatch(self, event: EventMessage) -> Any:
        handler = self.resolve(event.event_type)
        if handler is self._default_handler:
            logger.debug(f"No handler registered for {event.event_type}, using default")
        return await handler(event)

    @property
    def registered_types(self) -> list[str]:
        return sorted(self._handlers)
