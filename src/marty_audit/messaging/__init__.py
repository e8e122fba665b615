"""
Messaging layer for the audit service.

Broker backends behind one interface, topology declaration, the handler
registry and the consumption loop.
"""

from .backends import BackendFactory, BackendType, InMemoryBackend, MessageBackend
from .consumer import AuditConsumer
from .core import (
    ConsumerState,
    Delivery,
    EventMessage,
    EventMetadata,
    ExchangeConfig,
    ExchangeType,
    QueueConfig,
    TopologyConfig,
)
from .dispatcher import WILDCARD, EventDispatcher, EventHandler
from .topology import TopologyManager

__all__ = [
    "AuditConsumer",
    "BackendFactory",
    "BackendType",
    "ConsumerState",
    "Delivery",
    "EventDispatcher",
    "EventHandler",
    "EventMessage",
    "EventMetadata",
    "ExchangeConfig",
    "ExchangeType",
    "InMemoryBackend",
    "MessageBackend",
    "QueueConfig",
    "TopologyConfig",
    "TopologyManager",
    "WILDCARD",
]
