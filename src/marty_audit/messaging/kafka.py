"""Kafka backend built on aiokafka.

Exchanges map to topics and the routing key travels as the record key.
Queue bindings become topic subscriptions filtered by routing pattern.
"""

import asyncio
import logging
from typing import Any

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition
from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import KafkaError, TopicAlreadyExistsError

from ..exceptions import BrokerConnectionError, TopologyError
from .backends import DeliveryCallback, MessageBackend, topic_matches
from .core import Delivery, ExchangeConfig, QueueConfig

logger = logging.getLogger(__name__)


class KafkaDelivery(Delivery):
    """A consumed record; ack commits its offset."""

    def __init__(self, backend: "KafkaBackend", record: Any, dead_letter_topic: str | None):
        key = record.key.decode("utf-8") if record.key else ""
        super().__init__(record.value, key)
        self.record = record
        self._backend = backend
        self._dead_letter_topic = dead_letter_topic

    async def _ack(self) -> None:
        await self._backend._commit(self.record)

    async def _nack(self, requeue: bool) -> None:
        if requeue:
            self._backend._rewind(self.record)
            return
        if self._dead_letter_topic:
            headers = list(self.record.headers or [])
            headers.append(("x-death-reason", b"rejected"))
            headers.append(("x-death-topic", self.record.topic.encode("utf-8")))
            await self._backend._send(
                self._dead_letter_topic, self.record.value, self.record.key, headers
            )
        else:
            logger.warning(f"Dropping record {self.record.offset}: no dead-letter topic")
        await self._backend._commit(self.record)


class KafkaBackend(MessageBackend):
    """Kafka message bus backend.

    Records of a partition are settled one at a time, so committed offsets
    never move past an unsettled record. A record whose settlement fails is
    rewound and delivered again; if the rewind fails the consume task ends
    and the backend reports unhealthy.
    """

    def __init__(self, settings: Any):
        super().__init__(settings)
        self._producer: AIOKafkaProducer | None = None
        self._admin: AIOKafkaAdminClient | None = None
        self._consumer: AIOKafkaConsumer | None = None
        self._consume_task: asyncio.Task | None = None
        self._queues: dict[str, QueueConfig] = {}
        self._topics: set[str] = set()
        self._subscriptions: dict[str, list[tuple[str, str]]] = {}
        self._max_poll_records = 500
        self._current_delivery: KafkaDelivery | None = None
        self._stopping = False

    async def connect(self) -> None:
        if self._connected:
            logger.warning("Kafka backend already connected")
            return

        bootstrap = self.settings.kafka_bootstrap_servers
        try:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=bootstrap,
                request_timeout_ms=int(self.settings.connection_timeout * 1000),
            )
            await self._producer.start()
            self._admin = AIOKafkaAdminClient(bootstrap_servers=bootstrap)
            await self._admin.start()
        except KafkaError as e:
            logger.error(f"Failed to connect to Kafka at {bootstrap}: {e}")
            await self._release()
            raise BrokerConnectionError(f"Failed to connect to Kafka: {e}", cause=e) from e

        self._connected = True
        logger.info(f"Connected to Kafka at {bootstrap}")

    async def close(self) -> None:
        await self._shutdown_consumer()
        await self._release()
        if self._connected:
            self._connected = False
            logger.info("Disconnected from Kafka")

    async def _release(self) -> None:
        producer, self._producer = self._producer, None
        admin, self._admin = self._admin, None
        if producer is not None:
            await producer.stop()
        if admin is not None:
            await admin.close()

    def is_healthy(self) -> bool:
        if not self._connected or self._producer is None:
            return False
        if self._consume_task is not None and self._consume_task.done():
            return False
        return True

    async def declare_exchange(self, config: ExchangeConfig) -> None:
        self._require_connection()
        if config.name in self._topics:
            return
        try:
            await self._admin.create_topics(
                [NewTopic(name=config.name, num_partitions=1, replication_factor=1)]
            )
            logger.info(f"Created Kafka topic: {config.name}")
        except TopicAlreadyExistsError:
            logger.debug(f"Kafka topic already exists: {config.name}")
        self._topics.add(config.name)

    async def declare_queue(self, config: QueueConfig) -> None:
        self._require_connection()
        self._queues[config.name] = config
        self._subscriptions.setdefault(config.name, [])

    async def bind_queue(self, queue_name: str, exchange_name: str, routing_key: str) -> None:
        self._require_connection()
        if queue_name not in self._queues:
            raise TopologyError(f"Queue {queue_name} is not declared")
        if exchange_name not in self._topics:
            raise TopologyError(f"Topic {exchange_name} is not declared")
        binding = (exchange_name, routing_key)
        if binding not in self._subscriptions[queue_name]:
            self._subscriptions[queue_name].append(binding)

    async def set_prefetch(self, count: int) -> None:
        self._max_poll_records = count

    async def start_consuming(self, queue_name: str, on_delivery: DeliveryCallback) -> None:
        self._require_connection()
        bindings = self._subscriptions.get(queue_name)
        if not bindings:
            raise TopologyError(f"Queue {queue_name} has no bindings")

        topics = sorted({topic for topic, _ in bindings})
        self._consumer = AIOKafkaConsumer(
            *topics,
            bootstrap_servers=self.settings.kafka_bootstrap_servers,
            group_id=self.settings.kafka_group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
            max_poll_records=self._max_poll_records,
        )
        try:
            await self._consumer.start()
        except KafkaError as e:
            self._consumer = None
            raise BrokerConnectionError(f"Failed to start Kafka consumer: {e}", cause=e) from e

        self._stopping = False
        dead_letter_topic = self._queues[queue_name].dead_letter_exchange
        self._consume_task = asyncio.create_task(
            self._consume(queue_name, bindings, dead_letter_topic, on_delivery)
        )
        logger.info(f"Consuming Kafka topics {topics} for {queue_name}")

    async def _consume(
        self,
        queue_name: str,
        bindings: list[tuple[str, str]],
        dead_letter_topic: str | None,
        on_delivery: DeliveryCallback,
    ) -> None:
        try:
            async for record in self._consumer:
                key = record.key.decode("utf-8") if record.key else ""
                patterns = [pattern for topic, pattern in bindings if topic == record.topic]
                if not any(topic_matches(pattern, key) for pattern in patterns):
                    await self._commit(record)
                    continue

                delivery = KafkaDelivery(self, record, dead_letter_topic)
                self._current_delivery = delivery
                try:
                    await on_delivery(delivery)
                finally:
                    self._current_delivery = None
                if not delivery.settled:
                    # ack or nack failed; the record must not be skipped
                    logger.warning(
                        f"Record {record.topic}[{record.partition}]@{record.offset} "
                        "was not settled, rewinding for redelivery"
                    )
                    self._rewind(record)
                if self._stopping:
                    break
        except KafkaError as e:
            logger.error(f"Kafka consumer for {queue_name} failed: {e}")
            self._connected = False

    async def stop_consuming(self) -> None:
        """Stop fetching; a record being handled keeps the consumer until it settles."""
        self._stopping = True
        if self._current_delivery is None:
            await self._shutdown_consumer()

    async def _shutdown_consumer(self) -> None:
        task, self._consume_task = self._consume_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            await consumer.stop()

    async def publish(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        headers: dict[str, Any] | None = None,
    ) -> None:
        self._require_connection()
        kafka_headers = [(key, str(value).encode("utf-8")) for key, value in (headers or {}).items()]
        await self._send(exchange_name, body, routing_key.encode("utf-8"), kafka_headers)

    async def _send(
        self, topic: str, value: bytes, key: bytes | None, headers: list[tuple[str, bytes]]
    ) -> None:
        if self._producer is None:
            raise BrokerConnectionError("Kafka producer is not started")
        await self._producer.send_and_wait(topic, value=value, key=key, headers=headers)

    async def _commit(self, record: Any) -> None:
        if self._consumer is None:
            raise BrokerConnectionError("Kafka consumer is not running")
        partition = TopicPartition(record.topic, record.partition)
        await self._consumer.commit({partition: record.offset + 1})

    def _rewind(self, record: Any) -> None:
        if self._consumer is None:
            raise BrokerConnectionError("Kafka consumer is not running")
        self._consumer.seek(TopicPartition(record.topic, record.partition), record.offset)
