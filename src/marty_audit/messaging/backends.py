"""
Message Bus Backend Implementations

Defines the broker-neutral backend interface, the factory that selects a
variant from configuration and the in-memory backend used for development
and tests. RabbitMQ and Kafka variants live in their own modules.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..exceptions import BrokerConnectionError, TopologyError
from .core import Delivery, ExchangeConfig, ExchangeType, QueueConfig

logger = logging.getLogger(__name__)

DeliveryCallback = Callable[[Delivery], Awaitable[None]]


class BackendType(Enum):
    """Message bus backend types."""

    MEMORY = "memory"
    RABBITMQ = "rabbitmq"
    KAFKA = "kafka"


class MessageBackend(ABC):
    """Abstract message bus backend."""

    def __init__(self, settings: Any):
        self.settings = settings
        self._connected = False

    @abstractmethod
    async def connect(self) -> None:
        """Open the session; a second call while connected only logs a warning."""

    @abstractmethod
    async def close(self) -> None:
        """Release the session; safe to call repeatedly."""

    @abstractmethod
    def is_healthy(self) -> bool:
        """True only while the session and channel are open."""

    @abstractmethod
    async def declare_exchange(self, config: ExchangeConfig) -> None:
        """Declare an exchange if it does not exist."""

    @abstractmethod
    async def declare_queue(self, config: QueueConfig) -> None:
        """Declare a queue if it does not exist."""

    @abstractmethod
    async def bind_queue(self, queue_name: str, exchange_name: str, routing_key: str) -> None:
        """Route messages matching routing_key from exchange to queue."""

    @abstractmethod
    async def set_prefetch(self, count: int) -> None:
        """Bound the number of unacknowledged deliveries."""

    @abstractmethod
    async def start_consuming(self, queue_name: str, on_delivery: DeliveryCallback) -> None:
        """Start handing deliveries from queue_name to on_delivery."""

    @abstractmethod
    async def stop_consuming(self) -> None:
        """Stop receiving new deliveries; unsettled ones can still be settled."""

    @abstractmethod
    async def publish(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        headers: dict[str, Any] | None = None,
    ) -> None:
        """Publish a raw message."""

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _require_connection(self) -> None:
        if not self._connected:
            raise BrokerConnectionError(f"{type(self).__name__} is not connected")


class BackendFactory:
    """Single selection point between backend variants."""

    @staticmethod
    def create_backend(settings: Any) -> MessageBackend:
        backend_type = BackendType(settings.broker_type)

        if backend_type is BackendType.RABBITMQ:
            from .rabbitmq import RabbitMQBackend

            return RabbitMQBackend(settings)
        if backend_type is BackendType.KAFKA:
            from .kafka import KafkaBackend

            return KafkaBackend(settings)
        return InMemoryBackend(settings)


@dataclass
class _StoredMessage:
    body: bytes
    routing_key: str
    headers: dict[str, Any]
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass
class _MemoryQueue:
    config: QueueConfig
    messages: deque = field(default_factory=deque)
    unacked: int = 0


class InMemoryDelivery(Delivery):
    """Delivery handed out by the in-memory backend."""

    def __init__(self, backend: "InMemoryBackend", queue_name: str, message: _StoredMessage):
        super().__init__(message.body, message.routing_key)
        self.headers = message.headers
        self._backend = backend
        self._queue_name = queue_name
        self._message = message

    async def _ack(self) -> None:
        await self._backend._settle(self._queue_name)

    async def _nack(self, requeue: bool) -> None:
        if requeue:
            self._backend._queues[self._queue_name].messages.appendleft(self._message)
        else:
            self._backend._dead_letter(self._queue_name, self._message, reason="rejected")
        await self._backend._settle(self._queue_name)


class InMemoryBackend(MessageBackend):
    """In-memory message bus for development and testing.

    Implements topic routing (``*`` matches one word, ``#`` zero or more),
    per-queue TTL and dead-letter exchanges, and the prefetch limit.
    """

    def __init__(self, settings: Any = None):
        super().__init__(settings)
        self._exchanges: dict[str, ExchangeConfig] = {}
        self._bindings: dict[str, list[tuple[str, str]]] = {}
        self._queues: dict[str, _MemoryQueue] = {}
        self._prefetch = 0
        self._changed: asyncio.Condition | None = None
        self._pump_task: asyncio.Task | None = None
        self._delivery_tasks: set[asyncio.Task] = set()
        self._consuming = False

    async def connect(self) -> None:
        if self._connected:
            logger.warning("In-memory backend already connected")
            return
        self._changed = asyncio.Condition()
        self._connected = True
        logger.info("Connected to in-memory message backend")

    async def close(self) -> None:
        if not self._connected:
            return
        await self.stop_consuming()
        self._connected = False
        logger.info("Disconnected from in-memory message backend")

    def is_healthy(self) -> bool:
        return self._connected and self._changed is not None

    async def declare_exchange(self, config: ExchangeConfig) -> None:
        self._require_connection()
        existing = self._exchanges.get(config.name)
        if existing is not None and existing.exchange_type != config.exchange_type:
            raise TopologyError(
                f"Exchange {config.name} already declared as {existing.exchange_type.value}"
            )
        if existing is None:
            self._exchanges[config.name] = config
            self._bindings[config.name] = []
            logger.info(f"Declared in-memory exchange: {config.name}")

    async def declare_queue(self, config: QueueConfig) -> None:
        self._require_connection()
        existing = self._queues.get(config.name)
        if existing is not None:
            if existing.config.build_arguments() != config.build_arguments():
                raise TopologyError(f"Queue {config.name} already declared with different arguments")
            return
        self._queues[config.name] = _MemoryQueue(config)
        logger.info(f"Declared in-memory queue: {config.name}")

    async def bind_queue(self, queue_name: str, exchange_name: str, routing_key: str) -> None:
        self._require_connection()
        if exchange_name not in self._exchanges:
            raise TopologyError(f"Exchange {exchange_name} is not declared")
        if queue_name not in self._queues:
            raise TopologyError(f"Queue {queue_name} is not declared")
        binding = (routing_key, queue_name)
        if binding not in self._bindings[exchange_name]:
            self._bindings[exchange_name].append(binding)

    async def set_prefetch(self, count: int) -> None:
        self._prefetch = count

    async def publish(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        headers: dict[str, Any] | None = None,
    ) -> None:
        self._require_connection()
        if exchange_name not in self._exchanges:
            raise BrokerConnectionError(f"Exchange {exchange_name} is not declared")
        self._route(exchange_name, _StoredMessage(body, routing_key, dict(headers or {})))
        await self._notify()

    def bindings(self, exchange_name: str) -> list[tuple[str, str]]:
        return list(self._bindings.get(exchange_name, []))

    def queue_arguments(self, queue_name: str) -> dict[str, Any]:
        return self._queues[queue_name].config.build_arguments()

    def messages(self, queue_name: str) -> list[bytes]:
        """Bodies waiting in a queue, oldest first."""
        return [message.body for message in self._queues[queue_name].messages]

    async def start_consuming(self, queue_name: str, on_delivery: DeliveryCallback) -> None:
        self._require_connection()
        if queue_name not in self._queues:
            raise TopologyError(f"Queue {queue_name} is not declared")
        self._consuming = True
        self._pump_task = asyncio.create_task(self._pump(queue_name, on_delivery))

    async def stop_consuming(self) -> None:
        self._consuming = False
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None

    async def wait_until_idle(self, queue_name: str, timeout: float = 5.0) -> None:
        """Wait until queue_name is empty and every delivery is settled."""
        queue = self._queues[queue_name]

        async def _idle() -> None:
            async with self._changed:
                await self._changed.wait_for(
                    lambda: not queue.messages and queue.unacked == 0
                )

        await asyncio.wait_for(_idle(), timeout)

    async def _pump(self, queue_name: str, on_delivery: DeliveryCallback) -> None:
        queue = self._queues[queue_name]
        while self._consuming:
            async with self._changed:
                await self._changed.wait_for(
                    lambda: queue.messages
                    and (self._prefetch <= 0 or queue.unacked < self._prefetch)
                )
                message = queue.messages.popleft()
                if self._expired(queue.config, message):
                    self._dead_letter(queue_name, message, reason="expired")
                    self._changed.notify_all()
                    continue
                queue.unacked += 1

            delivery = InMemoryDelivery(self, queue_name, message)
            task = asyncio.create_task(on_delivery(delivery))
            self._delivery_tasks.add(task)
            task.add_done_callback(self._delivery_tasks.discard)

    def _route(self, exchange_name: str, message: _StoredMessage) -> int:
        exchange = self._exchanges[exchange_name]
        targets: list[str] = []
        for pattern, queue_name in self._bindings[exchange_name]:
            if exchange.exchange_type is ExchangeType.FANOUT:
                matched = True
            elif exchange.exchange_type is ExchangeType.DIRECT:
                matched = pattern == message.routing_key
            else:
                matched = topic_matches(pattern, message.routing_key)
            if matched and queue_name not in targets:
                targets.append(queue_name)

        for queue_name in targets:
            self._queues[queue_name].messages.append(
                _StoredMessage(message.body, message.routing_key, dict(message.headers))
            )
        if not targets:
            logger.warning(
                f"No queue bound to {exchange_name} for routing key {message.routing_key}"
            )
        return len(targets)

    def _dead_letter(self, queue_name: str, message: _StoredMessage, reason: str) -> None:
        dlx = self._queues[queue_name].config.dead_letter_exchange
        if not dlx or dlx not in self._exchanges:
            logger.warning(f"Dropping message from {queue_name}: no dead-letter exchange")
            return
        headers = dict(message.headers)
        headers["x-death-reason"] = reason
        headers["x-death-queue"] = queue_name
        self._route(dlx, _StoredMessage(message.body, message.routing_key, headers))

    async def _settle(self, queue_name: str) -> None:
        queue = self._queues[queue_name]
        queue.unacked = max(0, queue.unacked - 1)
        await self._notify()

    async def _notify(self) -> None:
        if self._changed is None:
            return
        async with self._changed:
            self._changed.notify_all()

    @staticmethod
    def _expired(config: QueueConfig, message: _StoredMessage) -> bool:
        if config.message_ttl is None:
            return False
        return (time.monotonic() - message.enqueued_at) * 1000 > config.message_ttl


def topic_matches(pattern: str, routing_key: str) -> bool:
    """AMQP topic matching: ``*`` is exactly one word, ``#`` zero or more."""
    return _match_words(pattern.split("."), routing_key.split("."))


def _match_words(pattern: list[str], words: list[str]) -> bool:
    if not pattern:
        return not words
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        return any(_match_words(rest, words[index:]) for index in range(len(words) + 1))
    if not words:
        return False
    if head == "*" or head == words[0]:
        return _match_words(rest, words[1:])
    return False
