"""Unit tests for the audit consumption loop."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
from prometheus_client import REGISTRY

from marty_audit.audit.recorder import AuditRecorder
from marty_audit.audit.schemas import AuditSearchParams
from marty_audit.audit.store import AuditStore, create_engine
from marty_audit.messaging.consumer import AuditConsumer
from marty_audit.messaging.core import Delivery, EventMessage
from marty_audit.messaging.dispatcher import EventDispatcher
from marty_audit.normalizers import build_dispatcher
from marty_audit.observability.logging import AuditLogger

EXCHANGE = "aioutlet.events"
QUEUE = "audit-service.queue"
DLQ = "audit-service.dlq"


async def eventually(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def processed(event_type: str, outcome: str) -> float:
    value = REGISTRY.get_sample_value(
        "audit_messages_processed_total", {"event_type": event_type, "outcome": outcome}
    )
    return value or 0.0


class BlockingDispatcher(EventDispatcher):
    """Holds every event until released."""

    def __init__(self):
        self.release = asyncio.Event()
        self.seen: list[str] = []
        super().__init__(default_handler=self._handle)

    async def _handle(self, event: EventMessage) -> None:
        self.seen.append(event.event_id)
        await self.release.wait()


class StubDelivery(Delivery):
    async def _ack(self) -> None:
        pass

    async def _nack(self, requeue: bool) -> None:
        pass


@pytest.fixture
async def consumer_for(declared_backend):
    consumers: list[AuditConsumer] = []

    async def start(dispatcher, prefetch_count: int = 10) -> AuditConsumer:
        consumer = AuditConsumer(declared_backend, dispatcher, QUEUE, prefetch_count=prefetch_count)
        await consumer.start()
        consumers.append(consumer)
        return consumer

    yield start
    for consumer in consumers:
        await consumer.stop(grace_period=0.1)


async def publish(backend, envelope_or_body, routing_key: str = "order.placed") -> None:
    if isinstance(envelope_or_body, dict):
        body = json.dumps(envelope_or_body).encode()
        routing_key = envelope_or_body["eventType"]
    else:
        body = envelope_or_body
    await backend.publish(EXCHANGE, routing_key, body)


@pytest.mark.unit
@pytest.mark.asyncio
class TestSettlement:
    """Test suite for ack and dead-letter outcomes."""

    async def test_successful_event_is_recorded_and_acked(
        self, declared_backend, consumer_for, recorder, store, make_event
    ):
        before = processed("order.placed", "acked")
        consumer = await consumer_for(build_dispatcher(recorder))

        await publish(declared_backend, make_event("order.placed", {"orderId": "o1"}, event_id="e1"))
        await declared_backend.wait_until_idle(QUEUE)

        result = await store.search(AuditSearchParams())
        assert [entry.event_id for entry in result.entries] == ["e1"]
        assert consumer.state.messages_acked == 1
        assert declared_backend.messages(DLQ) == []
        assert processed("order.placed", "acked") == before + 1

    async def test_undecodable_body_is_dead_lettered(self, declared_backend, consumer_for, recorder):
        consumer = await consumer_for(build_dispatcher(recorder))

        await publish(declared_backend, b"{not json")
        await declared_backend.wait_until_idle(QUEUE)

        assert declared_backend.messages(DLQ) == [b"{not json"]
        assert consumer.state.decode_failures == 1
        assert consumer.state.messages_dead_lettered == 1
        assert consumer.state.messages_acked == 0

    async def test_missing_required_field_is_dead_lettered(
        self, declared_backend, consumer_for, recorder, make_event
    ):
        consumer = await consumer_for(build_dispatcher(recorder))
        envelope = make_event("order.placed")
        del envelope["eventId"]

        await publish(declared_backend, envelope)
        await declared_backend.wait_until_idle(QUEUE)

        assert len(declared_backend.messages(DLQ)) == 1
        assert consumer.state.decode_failures == 1

    async def test_handler_failure_is_dead_lettered(self, declared_backend, consumer_for, make_event):
        async def failing(event: EventMessage) -> None:
            raise RuntimeError("handler exploded")

        before = processed("order.placed", "dead_lettered")
        consumer = await consumer_for(EventDispatcher(default_handler=failing))

        await publish(declared_backend, make_event("order.placed", {"orderId": "o1"}))
        await declared_backend.wait_until_idle(QUEUE)

        assert len(declared_backend.messages(DLQ)) == 1
        assert consumer.state.messages_dead_lettered == 1
        assert "handler exploded" in consumer.state.last_error
        assert processed("order.placed", "dead_lettered") == before + 1

    async def test_persistence_failure_reports_data_loss(
        self, declared_backend, consumer_for, settings, make_event
    ):
        audit_logger = AuditLogger(logger=MagicMock())
        # tables never created, so every insert fails
        broken_store = AuditStore(create_engine(settings.database_url))
        try:
            consumer = await consumer_for(build_dispatcher(AuditRecorder(broken_store, audit_logger)))

            await publish(declared_backend, make_event("order.placed", {"orderId": "o1"}, event_id="e1"))
            await declared_backend.wait_until_idle(QUEUE)
        finally:
            await broken_store.dispose()

        assert len(declared_backend.messages(DLQ)) == 1
        assert consumer.state.messages_dead_lettered == 1
        audit_logger._logger.critical.assert_called_once()
        _, fields = audit_logger._logger.critical.call_args
        assert fields["event_id"] == "e1"
        assert fields["audit_channel"] == "data_loss"

    async def test_redelivered_event_is_acked_once_recorded(
        self, declared_backend, consumer_for, recorder, store, make_event
    ):
        consumer = await consumer_for(build_dispatcher(recorder))
        envelope = make_event("order.placed", {"orderId": "o1"}, event_id="e1")

        await publish(declared_backend, envelope)
        await declared_backend.wait_until_idle(QUEUE)
        await publish(declared_backend, envelope)
        await declared_backend.wait_until_idle(QUEUE)

        assert consumer.state.messages_acked == 2
        assert (await store.search(AuditSearchParams())).total == 1

    async def test_unknown_event_type_uses_default_handler(
        self, declared_backend, consumer_for, recorder, store, make_event
    ):
        await consumer_for(build_dispatcher(recorder))

        await publish(declared_backend, make_event("billing.invoice.issued", {"id": "inv-1"}))
        await declared_backend.wait_until_idle(QUEUE)

        [entry] = (await store.search(AuditSearchParams())).entries
        assert entry.compliance_tags == ["unmapped-event"]
        assert entry.resource_id == "inv-1"


@pytest.mark.unit
@pytest.mark.asyncio
class TestFlowControl:
    """Test suite for prefetch and shutdown behaviour."""

    async def test_prefetch_bounds_in_flight_messages(self, declared_backend, consumer_for, make_event):
        dispatcher = BlockingDispatcher()
        consumer = await consumer_for(dispatcher, prefetch_count=2)

        for index in range(5):
            await publish(declared_backend, make_event("order.placed", event_id=f"e{index}"))

        await eventually(lambda: consumer.state.in_flight == 2)
        await asyncio.sleep(0.05)
        assert consumer.state.in_flight == 2
        assert len(declared_backend.messages(QUEUE)) == 3

        dispatcher.release.set()
        await declared_backend.wait_until_idle(QUEUE)
        assert consumer.state.messages_acked == 5
        assert sorted(dispatcher.seen) == [f"e{index}" for index in range(5)]

    async def test_stop_waits_for_in_flight_work(self, declared_backend, make_event):
        dispatcher = BlockingDispatcher()
        consumer = AuditConsumer(declared_backend, dispatcher, QUEUE, prefetch_count=3)
        await consumer.start()
        await publish(declared_backend, make_event("order.placed", event_id="e1"))
        await eventually(lambda: consumer.state.in_flight == 1)

        asyncio.get_running_loop().call_later(0.05, dispatcher.release.set)
        await consumer.stop(grace_period=2.0)

        assert consumer.state.messages_acked == 1
        assert declared_backend.messages(DLQ) == []
        assert consumer.state.accepting is False

    async def test_stop_dead_letters_work_past_grace_period(
        self, declared_backend, make_event
    ):
        dispatcher = BlockingDispatcher()
        consumer = AuditConsumer(declared_backend, dispatcher, QUEUE, prefetch_count=2)
        await consumer.start()
        for index in range(3):
            await publish(declared_backend, make_event("order.placed", event_id=f"e{index}"))
        await eventually(lambda: consumer.state.in_flight == 2)

        await consumer.stop(grace_period=0.05)

        assert len(declared_backend.messages(DLQ)) == 2
        assert consumer.state.messages_dead_lettered == 2
        assert consumer.state.in_flight == 0
        # never delivered, still waiting for the next consumer
        assert len(declared_backend.messages(QUEUE)) == 1

    async def test_deliveries_after_stop_are_requeued(self, declared_backend, make_event):
        consumer = AuditConsumer(declared_backend, BlockingDispatcher(), QUEUE)
        await consumer.start()
        await consumer.stop(grace_period=0.1)

        delivery = StubDelivery(json.dumps(make_event("order.placed")).encode())
        await consumer.handle_delivery(delivery)

        assert delivery.outcome == "requeue"

    async def test_state_is_a_snapshot(self, declared_backend, consumer_for, recorder):
        consumer = await consumer_for(build_dispatcher(recorder))

        state = consumer.state
        state.messages_acked = 99

        assert consumer.state.messages_acked == 0
        assert consumer.state.accepting is True
        assert consumer.state.started_at is not None
