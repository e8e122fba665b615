"""
Shared fixtures for the audit service tests.

Everything runs against the in-memory broker and a throwaway SQLite database,
so no external services are needed.
"""

import json
import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from marty_audit.audit.recorder import AuditRecorder
from marty_audit.audit.schemas import AuditLogCreate, Severity, UserType
from marty_audit.audit.store import AuditStore, create_engine
from marty_audit.config import AuditSettings
from marty_audit.messaging.backends import InMemoryBackend
from marty_audit.messaging.core import TopologyConfig
from marty_audit.messaging.topology import TopologyManager

BASE_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path: Path) -> AuditSettings:
    """Settings wired to the in-memory broker and a temporary SQLite file."""
    return AuditSettings(
        broker_type="memory",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}",
        metrics_enabled=False,
        shutdown_grace_period=2.0,
    )


@pytest.fixture
def topology(settings: AuditSettings) -> TopologyConfig:
    return TopologyConfig.from_settings(settings)


@pytest.fixture
async def store(settings: AuditSettings) -> AsyncGenerator[AuditStore, None]:
    audit_store = AuditStore(create_engine(settings.database_url))
    await audit_store.create_tables()
    yield audit_store
    await audit_store.dispose()


@pytest.fixture
def recorder(store: AuditStore) -> AuditRecorder:
    return AuditRecorder(store)


@pytest.fixture
async def backend(settings: AuditSettings) -> AsyncGenerator[InMemoryBackend, None]:
    memory_backend = InMemoryBackend(settings)
    await memory_backend.connect()
    yield memory_backend
    await memory_backend.close()


@pytest.fixture
async def declared_backend(
    backend: InMemoryBackend, topology: TopologyConfig
) -> InMemoryBackend:
    """In-memory backend with the audit topology already declared."""
    await TopologyManager(backend, topology).setup()
    return backend


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    """Factory for raw event envelopes as a producer would publish them."""

    def factory(
        event_type: str,
        data: dict[str, Any] | None = None,
        *,
        event_id: str | None = None,
        correlation_id: str | None = "corr-1",
        source: str | None = None,
        timestamp: datetime = BASE_TIME,
    ) -> dict[str, Any]:
        envelope: dict[str, Any] = {
            "eventId": event_id or f"evt-{uuid.uuid4().hex[:12]}",
            "eventType": event_type,
            "timestamp": timestamp.isoformat(),
            "data": data or {},
            "metadata": {"correlationId": correlation_id, "version": "1.0"},
        }
        if source is not None:
            envelope["source"] = source
        return envelope

    return factory


@pytest.fixture
def encode() -> Callable[[dict[str, Any]], bytes]:
    def encoder(envelope: dict[str, Any]) -> bytes:
        return json.dumps(envelope).encode("utf-8")

    return encoder


@pytest.fixture
def make_entry() -> Callable[..., AuditLogCreate]:
    """Factory for normalized entries, bypassing the normalizers."""

    def factory(**overrides: Any) -> AuditLogCreate:
        values: dict[str, Any] = {
            "event_id": f"evt-{uuid.uuid4().hex[:12]}",
            "event_type": "order.placed",
            "action_type": "ORDER_PLACED",
            "service_name": "order-service",
            "resource_type": "order",
            "resource_id": "o1",
            "user_id": "u1",
            "user_type": UserType.CUSTOMER,
            "correlation_id": "corr-1",
            "severity": Severity.MEDIUM,
            "compliance_tags": ["order"],
            "success": True,
            "occurred_at": BASE_TIME,
        }
        values.update(overrides)
        return AuditLogCreate(**values)

    return factory
