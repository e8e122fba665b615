"""Audit service bootstrap and lifecycle."""

from __future__ import annotations

import asyncio
import signal
import time
from typing import Any

import structlog

from .audit.query import AuditQueryService
from .audit.recorder import AuditRecorder
from .audit.store import AuditStore
from .config import AuditSettings
from .messaging.backends import BackendFactory, MessageBackend
from .messaging.consumer import AuditConsumer
from .messaging.core import TopologyConfig
from .messaging.dispatcher import EventDispatcher
from .messaging.topology import TopologyManager
from .normalizers import build_dispatcher
from .observability.health import HealthStatus
from .observability.logging import AuditLogger
from .observability.metrics import start_metrics_server


class AuditService:
    """Orchestrates store, broker, topology, consumer and graceful shutdown."""

    def __init__(
        self,
        settings: AuditSettings,
        backend: MessageBackend | None = None,
        store: AuditStore | None = None,
    ) -> None:
        self._settings = settings
        self._logger = structlog.get_logger(__name__)
        self.store = store or AuditStore.from_settings(settings)
        self.backend = backend
        self.query = AuditQueryService(
            self.store,
            default_limit=settings.search_default_limit,
            max_limit=settings.search_max_limit,
        )
        self.dispatcher: EventDispatcher | None = None
        self.consumer: AuditConsumer | None = None
        self._started_at: float | None = None

    async def start(self, create_tables: bool = False) -> None:
        """Bring the pipeline up; any failure here aborts startup."""
        settings = self._settings
        if create_tables:
            await self.store.create_tables()

        if self.backend is None:
            self.backend = BackendFactory.create_backend(settings)
        await self.backend.connect()
        self._logger.info(
            "audit.broker.connected",
            broker=settings.broker_type,
            url=settings.redacted_broker_url,
        )

        await TopologyManager(self.backend, TopologyConfig.from_settings(settings)).setup()

        recorder = AuditRecorder(self.store, AuditLogger())
        self.dispatcher = build_dispatcher(recorder)
        self.consumer = AuditConsumer(
            self.backend,
            self.dispatcher,
            queue_name=settings.queue_name,
            prefetch_count=settings.prefetch_count,
        )
        await self.consumer.start()

        if settings.metrics_enabled:
            start_metrics_server(settings.metrics_port)

        self._started_at = time.monotonic()
        self._logger.info(
            "audit.service.started",
            queue=settings.queue_name,
            handlers=len(self.dispatcher.registered_types),
        )

    async def stop(self) -> None:
        self._logger.info("audit.service.stopping")
        if self.consumer is not None:
            await self.consumer.stop(self._settings.shutdown_grace_period)
        if self.backend is not None:
            await self.backend.close()
        await self.store.dispose()
        self._logger.info("audit.service.stopped")

    async def run(self, shutdown_after: float | None = None, create_tables: bool = False) -> None:
        try:
            await self.start(create_tables=create_tables)
        except Exception:
            self._logger.error("audit.service.start_failed", exc_info=True)
            await self.stop()
            raise
        await self._wait_for_termination(shutdown_after)

    async def _wait_for_termination(self, shutdown_after: float | None) -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        try:
            if shutdown_after is None:
                await stop_event.wait()
            else:
                await asyncio.wait_for(stop_event.wait(), timeout=shutdown_after)
        except asyncio.TimeoutError:
            self._logger.info("audit.service.shutdown_timer.elapsed", seconds=shutdown_after)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

        await self.stop()

    async def health(self) -> HealthStatus:
        checks: dict[str, Any] = {
            "broker": self.backend is not None and self.backend.is_healthy(),
            "database": await self.store.health_check(),
        }
        if self.consumer is not None:
            checks["consumer"] = self.consumer.state.to_dict()

        accepting = self.consumer is not None and self.consumer.state.accepting
        if checks["broker"] and checks["database"] and accepting:
            status = "healthy"
        elif checks["database"] or checks["broker"]:
            status = "degraded"
        else:
            status = "unhealthy"

        uptime = time.monotonic() - self._started_at if self._started_at is not None else 0.0
        return HealthStatus(
            status=status,
            uptime_seconds=uptime,
            version=self._settings.version,
            checks=checks,
        )


async def serve(settings: AuditSettings, shutdown_after: float | None = None) -> None:
    service = AuditService(settings)
    await service.run(shutdown_after=shutdown_after)
