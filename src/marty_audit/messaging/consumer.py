"""
Audit consumption loop.

Receives deliveries from the backend under the prefetch bound, decodes and
dispatches them, then settles each one: ack on success, nack without requeue
(dead-letter) on any failure. No exception escapes the delivery callback.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

from ..exceptions import EventDecodeError, PersistenceError
from ..observability import metrics
from ..observability.logging import bind_event_context
from .backends import MessageBackend
from .core import ConsumerState, Delivery, EventMessage
from .dispatcher import EventDispatcher

logger = logging.getLogger(__name__)

UNDECODED_EVENT_TYPE = "undecodable"


class AuditConsumer:
    """Single consumption loop per process."""

    def __init__(
        self,
        backend: MessageBackend,
        dispatcher: EventDispatcher,
        queue_name: str,
        prefetch_count: int = 10,
    ):
        self.backend = backend
        self.dispatcher = dispatcher
        self.queue_name = queue_name
        self.prefetch_count = prefetch_count
        self._state = ConsumerState()
        self._semaphore = asyncio.Semaphore(prefetch_count)
        self._in_flight: set[asyncio.Task] = set()

    @property
    def state(self) -> ConsumerState:
        """Read-only view for health checks."""
        return self._state.snapshot()

    async def start(self) -> None:
        await self.backend.set_prefetch(self.prefetch_count)
        self._state.accepting = True
        self._state.started_at = datetime.now(timezone.utc)
        await self.backend.start_consuming(self.queue_name, self.handle_delivery)
        logger.info(f"Audit consumer started on {self.queue_name} (prefetch={self.prefetch_count})")

    async def stop(self, grace_period: float = 30.0) -> None:
        """Stop intake, give in-flight deliveries grace_period seconds, cancel the rest."""
        self._state.accepting = False
        await self.backend.stop_consuming()

        pending = {task for task in self._in_flight if not task.done()}
        if pending:
            logger.info(f"Waiting up to {grace_period}s for {len(pending)} in-flight message(s)")
            _, pending = await asyncio.wait(pending, timeout=grace_period)
        if pending:
            logger.warning(f"Cancelling {len(pending)} in-flight message(s) after grace period")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Audit consumer stopped")

    async def handle_delivery(self, delivery: Delivery) -> None:
        """Backend callback for one delivery."""
        if not self._state.accepting:
            await self._settle_safely(delivery, requeue=True)
            return

        async with self._semaphore:
            task = asyncio.current_task()
            if task is not None:
                self._in_flight.add(task)
            try:
                await self._process(delivery)
            finally:
                if task is not None:
                    self._in_flight.discard(task)

    async def _process(self, delivery: Delivery) -> None:
        state = self._state
        state.messages_received += 1
        state.in_flight += 1
        state.last_message_at = datetime.now(timezone.utc)
        metrics.IN_FLIGHT.inc()
        started = time.perf_counter()
        event_type = UNDECODED_EVENT_TYPE

        try:
            try:
                event = EventMessage.decode(delivery.body)
            except EventDecodeError as e:
                state.decode_failures += 1
                logger.error(f"Discarding undecodable message: {e}")
                await self._dead_letter(delivery, event_type, e, started)
                return

            event_type = event.event_type
            with bind_event_context(event.correlation_id, event.event_id, event.event_type):
                try:
                    await self.dispatcher.dispatch(event)
                except asyncio.CancelledError:
                    logger.warning(f"Handling of {event.event_id} cancelled during shutdown")
                    await self._dead_letter(delivery, event_type, None, started)
                    raise
                except Exception as e:
                    self._log_failure(event, e)
                    await self._dead_letter(delivery, event_type, e, started)
                    return

                try:
                    await delivery.ack()
                except Exception as e:
                    state.last_error = f"ack failed: {e}"
                    logger.error(f"Failed to acknowledge event {event.event_id}: {e}")
                    return
                state.messages_acked += 1
                metrics.record_settlement(
                    event_type, metrics.OUTCOME_ACKED, time.perf_counter() - started
                )
        finally:
            state.in_flight -= 1
            metrics.IN_FLIGHT.dec()

    def _log_failure(self, event: EventMessage, error: Exception) -> None:
        if isinstance(error, PersistenceError):
            # already reported on the data-loss channel by the recorder
            logger.error(f"Persistence failed for event {event.event_id}: {error}")
        else:
            logger.error(
                f"Handler failed for event {event.event_id} ({event.event_type}): "
                f"{type(error).__name__}: {error}"
            )

    async def _dead_letter(
        self, delivery: Delivery, event_type: str, error: Exception | None, started: float
    ) -> None:
        self._state.last_error = str(error) if error is not None else "cancelled"
        if await self._settle_safely(delivery, requeue=False):
            self._state.messages_dead_lettered += 1
        metrics.record_settlement(
            event_type, metrics.OUTCOME_DEAD_LETTERED, time.perf_counter() - started
        )

    async def _settle_safely(self, delivery: Delivery, requeue: bool) -> bool:
        try:
            await delivery.nack(requeue=requeue)
        except Exception as e:
            logger.error(f"Failed to reject message (requeue={requeue}): {e}")
            return False
        return True
