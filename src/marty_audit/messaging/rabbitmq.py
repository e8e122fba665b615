"""RabbitMQ backend built on aio-pika."""

import logging
from typing import Any

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
)

from ..exceptions import BrokerConnectionError, TopologyError
from .backends import DeliveryCallback, MessageBackend
from .core import Delivery, ExchangeConfig, QueueConfig

logger = logging.getLogger(__name__)


class RabbitMQDelivery(Delivery):
    """Wraps an aio-pika incoming message."""

    def __init__(self, message: AbstractIncomingMessage):
        super().__init__(message.body, message.routing_key or "")
        self.message = message

    async def _ack(self) -> None:
        await self.message.ack()

    async def _nack(self, requeue: bool) -> None:
        await self.message.nack(requeue=requeue)


class RabbitMQBackend(MessageBackend):
    """RabbitMQ message bus backend.

    Uses a plain (non-robust) connection: when the broker drops the session
    the connected flag flips to false and recovery is left to the process
    supervisor.
    """

    def __init__(self, settings: Any):
        super().__init__(settings)
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchanges: dict[str, AbstractExchange] = {}
        self._queues: dict[str, AbstractQueue] = {}
        self._consumer_queue: AbstractQueue | None = None
        self._consumer_tag: str | None = None

    async def connect(self) -> None:
        if self._connected:
            logger.warning("RabbitMQ backend already connected")
            return

        try:
            self._connection = await aio_pika.connect(
                self.settings.broker_url, timeout=self.settings.connection_timeout
            )
            self._connection.close_callbacks.add(self._on_connection_closed)
            self._channel = await self._connection.channel()
            self._channel.close_callbacks.add(self._on_channel_closed)
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ at {self.settings.redacted_broker_url}: {e}")
            await self._release()
            raise BrokerConnectionError(f"Failed to connect to RabbitMQ: {e}", cause=e) from e

        self._connected = True
        logger.info(f"Connected to RabbitMQ at {self.settings.redacted_broker_url}")

    async def close(self) -> None:
        await self.stop_consuming()
        await self._release()
        if self._connected:
            self._connected = False
            logger.info("Disconnected from RabbitMQ")

    async def _release(self) -> None:
        connection, self._connection = self._connection, None
        self._channel = None
        self._exchanges.clear()
        self._queues.clear()
        if connection is not None and not connection.is_closed:
            connection.close_callbacks.discard(self._on_connection_closed)
            await connection.close()

    def is_healthy(self) -> bool:
        return (
            self._connected
            and self._connection is not None
            and not self._connection.is_closed
            and self._channel is not None
            and not self._channel.is_closed
        )

    def _on_connection_closed(self, sender: Any, exc: BaseException | None = None) -> None:
        if exc is not None:
            logger.error(f"RabbitMQ connection closed unexpectedly: {exc}")
        else:
            logger.warning("RabbitMQ connection closed")
        self._connected = False

    def _on_channel_closed(self, sender: Any, exc: BaseException | None = None) -> None:
        if exc is not None:
            logger.error(f"RabbitMQ channel closed unexpectedly: {exc}")
        self._connected = False

    def _require_channel(self) -> AbstractChannel:
        self._require_connection()
        if self._channel is None:
            raise BrokerConnectionError("RabbitMQ channel is not open")
        return self._channel

    async def declare_exchange(self, config: ExchangeConfig) -> None:
        channel = self._require_channel()
        exchange = await channel.declare_exchange(
            config.name,
            aio_pika.ExchangeType(config.exchange_type.value),
            durable=config.durable,
            auto_delete=config.auto_delete,
        )
        self._exchanges[config.name] = exchange
        logger.info(f"Declared RabbitMQ exchange: {config.name}")

    async def declare_queue(self, config: QueueConfig) -> None:
        channel = self._require_channel()
        queue = await channel.declare_queue(
            config.name,
            durable=config.durable,
            auto_delete=config.auto_delete,
            arguments=config.build_arguments(),
        )
        self._queues[config.name] = queue
        logger.info(f"Declared RabbitMQ queue: {config.name}")

    async def bind_queue(self, queue_name: str, exchange_name: str, routing_key: str) -> None:
        self._require_channel()
        queue = self._queues.get(queue_name)
        exchange = self._exchanges.get(exchange_name)
        if queue is None or exchange is None:
            raise TopologyError(
                f"Cannot bind {queue_name} to {exchange_name}: declare both first"
            )
        await queue.bind(exchange, routing_key=routing_key)
        logger.info(f"Bound queue {queue_name} to {exchange_name} with key {routing_key}")

    async def set_prefetch(self, count: int) -> None:
        channel = self._require_channel()
        await channel.set_qos(prefetch_count=count)

    async def start_consuming(self, queue_name: str, on_delivery: DeliveryCallback) -> None:
        self._require_channel()
        queue = self._queues.get(queue_name)
        if queue is None:
            raise TopologyError(f"Queue {queue_name} is not declared")

        async def _callback(message: AbstractIncomingMessage) -> None:
            await on_delivery(RabbitMQDelivery(message))

        self._consumer_tag = await queue.consume(_callback, no_ack=False)
        self._consumer_queue = queue
        logger.info(f"Consuming from RabbitMQ queue: {queue_name}")

    async def stop_consuming(self) -> None:
        queue, tag = self._consumer_queue, self._consumer_tag
        self._consumer_queue = None
        self._consumer_tag = None
        if queue is None or tag is None or not self.is_healthy():
            return
        await queue.cancel(tag)
        logger.info("Stopped consuming from RabbitMQ")

    async def publish(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        headers: dict[str, Any] | None = None,
    ) -> None:
        self._require_channel()
        exchange = self._exchanges.get(exchange_name)
        if exchange is None:
            raise BrokerConnectionError(f"Exchange {exchange_name} is not declared")
        message = aio_pika.Message(
            body=body,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            headers=headers or {},
        )
        await exchange.publish(message, routing_key=routing_key)
