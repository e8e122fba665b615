"""Declares the consumer's routing structure on the bus."""

import logging

from ..exceptions import TopologyError
from .backends import MessageBackend
from .core import ExchangeConfig, ExchangeType, QueueConfig, TopologyConfig

logger = logging.getLogger(__name__)


class TopologyManager:
    """
    Declares exchanges, queues and bindings in a fixed order.

    Every declaration is declare-if-absent, so setup() may run on each
    connect. Any failure is raised as TopologyError and must stop startup.
    """

    def __init__(self, backend: MessageBackend, config: TopologyConfig):
        self.backend = backend
        self.config = config

    async def setup(self) -> None:
        config = self.config
        try:
            await self.backend.declare_exchange(
                ExchangeConfig(name=config.exchange_name, exchange_type=ExchangeType.TOPIC)
            )

            # Dead-letter path must exist before the input queue references it.
            await self.backend.declare_exchange(
                ExchangeConfig(name=config.dead_letter_exchange, exchange_type=ExchangeType.FANOUT)
            )
            await self.backend.declare_queue(QueueConfig(name=config.dead_letter_queue))
            await self.backend.bind_queue(
                config.dead_letter_queue, config.dead_letter_exchange, "#"
            )

            await self.backend.declare_queue(
                QueueConfig(
                    name=config.queue_name,
                    message_ttl=config.message_ttl_ms,
                    dead_letter_exchange=config.dead_letter_exchange,
                )
            )
            for routing_key in config.binding_keys:
                await self.backend.bind_queue(config.queue_name, config.exchange_name, routing_key)
        except TopologyError:
            raise
        except Exception as e:
            raise TopologyError(f"Failed to declare topology: {e}", cause=e) from e

        logger.info(
            f"Topology ready: {config.exchange_name} -> {config.queue_name} "
            f"(bindings={list(config.binding_keys)}, dlx={config.dead_letter_exchange})"
        )
