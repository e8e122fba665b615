"""Unit tests for the Kafka backend with aiokafka mocked out."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiokafka import TopicPartition
from aiokafka.errors import (
    CommitFailedError,
    IllegalStateError,
    KafkaConnectionError,
    TopicAlreadyExistsError,
)

from marty_audit.exceptions import BrokerConnectionError, TopologyError
from marty_audit.messaging.consumer import AuditConsumer
from marty_audit.messaging.core import ExchangeConfig, QueueConfig
from marty_audit.messaging.dispatcher import EventDispatcher
from marty_audit.messaging.kafka import KafkaBackend


def record(key, value=b"{}", offset=0, topic="aioutlet.events"):
    return SimpleNamespace(
        topic=topic, partition=0, offset=offset, key=key, value=value, headers=[]
    )


class FakeConsumer:
    """Replays a fixed list of records, then blocks like an idle consumer."""

    def __init__(self, records):
        self._records = list(records)
        self.start = AsyncMock()
        self.stop = AsyncMock()
        self.commit = AsyncMock()
        self.seek = MagicMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._records:
            return self._records.pop(0)
        await asyncio.Event().wait()


@pytest.fixture
def kafka_settings(settings):
    return settings.model_copy(update={"broker_type": "kafka"})


@pytest.fixture
def kafka():
    producer = AsyncMock()
    admin = AsyncMock()
    consumer = FakeConsumer([])
    with patch("marty_audit.messaging.kafka.AIOKafkaProducer", return_value=producer), patch(
        "marty_audit.messaging.kafka.AIOKafkaAdminClient", return_value=admin
    ), patch("marty_audit.messaging.kafka.AIOKafkaConsumer", return_value=consumer) as consumer_cls:
        yield SimpleNamespace(
            producer=producer, admin=admin, consumer=consumer, consumer_cls=consumer_cls
        )


async def declared(kafka_settings):
    backend = KafkaBackend(kafka_settings)
    await backend.connect()
    await backend.declare_exchange(ExchangeConfig("aioutlet.events"))
    await backend.declare_queue(
        QueueConfig("audit-service.queue", dead_letter_exchange="aioutlet.dlx")
    )
    await backend.bind_queue("audit-service.queue", "aioutlet.events", "order.*")
    return backend


@pytest.mark.unit
@pytest.mark.asyncio
class TestKafkaBackend:
    """Test suite for KafkaBackend."""

    async def test_connect_and_close(self, kafka_settings, kafka):
        backend = KafkaBackend(kafka_settings)

        await backend.connect()
        assert backend.is_healthy()

        await backend.close()
        kafka.producer.stop.assert_awaited_once()
        kafka.admin.close.assert_awaited_once()
        assert not backend.is_connected

    async def test_connect_failure(self, kafka_settings, kafka):
        kafka.producer.start.side_effect = KafkaConnectionError()
        backend = KafkaBackend(kafka_settings)

        with pytest.raises(BrokerConnectionError):
            await backend.connect()

        assert not backend.is_connected

    async def test_existing_topic_is_accepted(self, kafka_settings, kafka):
        kafka.admin.create_topics.side_effect = TopicAlreadyExistsError()
        backend = KafkaBackend(kafka_settings)
        await backend.connect()

        await backend.declare_exchange(ExchangeConfig("aioutlet.events"))
        await backend.declare_exchange(ExchangeConfig("aioutlet.events"))

        kafka.admin.create_topics.assert_awaited_once()

    async def test_bind_requires_declarations(self, kafka_settings, kafka):
        backend = KafkaBackend(kafka_settings)
        await backend.connect()

        with pytest.raises(TopologyError):
            await backend.bind_queue("audit-service.queue", "aioutlet.events", "#")

    async def test_consume_commits_and_filters(self, kafka_settings, kafka):
        kafka.consumer._records = [
            record(b"order.placed", offset=0),
            record(b"payment.received", offset=1),
        ]
        backend = await declared(kafka_settings)
        await backend.set_prefetch(5)
        seen = []

        async def on_delivery(delivery):
            seen.append(delivery.routing_key)
            await delivery.ack()

        await backend.start_consuming("audit-service.queue", on_delivery)
        await asyncio.sleep(0.05)

        assert seen == ["order.placed"]
        assert kafka.consumer_cls.call_args.kwargs["max_poll_records"] == 5
        assert kafka.consumer_cls.call_args.kwargs["enable_auto_commit"] is False
        partition = TopicPartition("aioutlet.events", 0)
        assert kafka.consumer.commit.await_args_list[0].args == ({partition: 1},)
        assert kafka.consumer.commit.await_args_list[1].args == ({partition: 2},)
        await backend.close()

    async def test_nack_sends_to_dead_letter_topic(self, kafka_settings, kafka):
        kafka.consumer._records = [record(b"order.placed", value=b"bad")]
        backend = await declared(kafka_settings)

        async def on_delivery(delivery):
            await delivery.nack(requeue=False)

        await backend.start_consuming("audit-service.queue", on_delivery)
        await asyncio.sleep(0.05)

        topic = kafka.producer.send_and_wait.call_args.args[0]
        sent = kafka.producer.send_and_wait.call_args.kwargs
        assert topic == "aioutlet.dlx"
        assert sent["value"] == b"bad"
        assert ("x-death-reason", b"rejected") in sent["headers"]
        kafka.consumer.commit.assert_awaited_once()
        await backend.close()

    async def test_requeue_rewinds(self, kafka_settings, kafka):
        kafka.consumer._records = [record(b"order.placed", offset=7)]
        backend = await declared(kafka_settings)

        async def on_delivery(delivery):
            await delivery.nack(requeue=True)

        await backend.start_consuming("audit-service.queue", on_delivery)
        await asyncio.sleep(0.05)

        kafka.consumer.seek.assert_called_once_with(TopicPartition("aioutlet.events", 0), 7)
        kafka.consumer.commit.assert_not_awaited()
        await backend.close()

    async def test_publish_uses_routing_key_as_record_key(self, kafka_settings, kafka):
        backend = KafkaBackend(kafka_settings)
        await backend.connect()

        await backend.publish("aioutlet.events", "order.placed", b"{}", headers={"v": 1})

        kafka.producer.send_and_wait.assert_awaited_once_with(
            "aioutlet.events", value=b"{}", key=b"order.placed", headers=[("v", b"1")]
        )

    async def test_failed_commit_does_not_stall_consumption(
        self, kafka_settings, kafka, make_event, encode
    ):
        kafka.consumer._records = [
            record(b"order.placed", value=encode(make_event("order.placed")), offset=0),
            record(b"order.placed", value=encode(make_event("order.placed")), offset=1),
        ]
        kafka.consumer.commit.side_effect = [CommitFailedError("rebalance in progress"), None]
        handler = AsyncMock()
        backend = await declared(kafka_settings)
        dispatcher = EventDispatcher(default_handler=handler)
        consumer = AuditConsumer(backend, dispatcher, "audit-service.queue")

        await consumer.start()
        await asyncio.sleep(0.1)

        assert handler.await_count == 2
        kafka.consumer.seek.assert_called_once_with(TopicPartition("aioutlet.events", 0), 0)
        assert kafka.consumer.commit.await_args_list[1].args == (
            {TopicPartition("aioutlet.events", 0): 2},
        )
        assert backend.is_healthy()
        await consumer.stop(0)
        await backend.close()

    async def test_failed_rewind_marks_backend_unhealthy(self, kafka_settings, kafka):
        kafka.consumer._records = [record(b"order.placed", offset=0)]
        kafka.consumer.commit.side_effect = CommitFailedError("rebalance in progress")
        kafka.consumer.seek.side_effect = IllegalStateError("partition not assigned")
        backend = await declared(kafka_settings)

        async def on_delivery(delivery):
            try:
                await delivery.ack()
            except CommitFailedError:
                pass

        await backend.start_consuming("audit-service.queue", on_delivery)
        await asyncio.sleep(0.05)

        assert not backend.is_healthy()
        await backend.close()
