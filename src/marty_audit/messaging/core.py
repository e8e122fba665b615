"""
Core messaging types for the audit consumer.

Defines the inbound event envelope, the broker-neutral delivery handle, the
topology description and the consumer state shared with health checks.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..exceptions import EventDecodeError

if TYPE_CHECKING:
    from ..config import AuditSettings

UNKNOWN_CORRELATION_ID = "unknown"


class EventMetadata(BaseModel):
    """Producer supplied envelope metadata."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    correlation_id: str = Field(default=UNKNOWN_CORRELATION_ID, alias="correlationId")
    version: str | None = None

    @field_validator("correlation_id", mode="before")
    @classmethod
    def _default_correlation_id(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return UNKNOWN_CORRELATION_ID
        return value


class EventMessage(BaseModel):
    """An event as published on the bus by a domain service."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    event_id: str = Field(alias="eventId", min_length=1)
    event_type: str = Field(alias="eventType", min_length=1)
    timestamp: datetime
    source: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    @field_validator("data", "metadata", mode="before")
    @classmethod
    def _empty_when_null(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def correlation_id(self) -> str:
        return self.metadata.correlation_id

    @classmethod
    def decode(cls, body: bytes | str) -> EventMessage:
        """Parse a raw delivery body, raising EventDecodeError on any defect."""
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise EventDecodeError(f"Message body is not valid JSON: {e}", cause=e) from e

        if not isinstance(payload, dict):
            raise EventDecodeError(
                f"Message body must be a JSON object, got {type(payload).__name__}"
            )

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            event_id = payload.get("eventId")
            raise EventDecodeError(
                f"Message does not match the event envelope: {e.error_count()} error(s)",
                event_id=event_id if isinstance(event_id, str) else None,
                cause=e,
            ) from e

    def encode(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


class Delivery(ABC):
    """
    One received message awaiting settlement.

    Settlement happens at most once; later ack/nack calls are ignored.
    """

    def __init__(self, body: bytes, routing_key: str = ""):
        self.body = body
        self.routing_key = routing_key
        self.outcome: str | None = None
        self._settled = asyncio.Event()

    @property
    def settled(self) -> bool:
        return self._settled.is_set()

    async def ack(self) -> None:
        if self.settled:
            return
        await self._ack()
        self._mark("ack")

    async def nack(self, requeue: bool = False) -> None:
        if self.settled:
            return
        await self._nack(requeue)
        self._mark("requeue" if requeue else "dead_letter")

    async def wait_settled(self) -> str | None:
        await self._settled.wait()
        return self.outcome

    def _mark(self, outcome: str) -> None:
        self.outcome = outcome
        self._settled.set()

    @abstractmethod
    async def _ack(self) -> None:
        """Backend specific acknowledgement."""

    @abstractmethod
    async def _nack(self, requeue: bool) -> None:
        """Backend specific negative acknowledgement."""


class ExchangeType(Enum):
    """Exchange routing types."""

    DIRECT = "direct"
    TOPIC = "topic"
    FANOUT = "fanout"


@dataclass
class ExchangeConfig:
    """Exchange declaration."""

    name: str
    exchange_type: ExchangeType = ExchangeType.TOPIC
    durable: bool = True
    auto_delete: bool = False


@dataclass
class QueueConfig:
    """Queue declaration."""

    name: str
    durable: bool = True
    auto_delete: bool = False
    message_ttl: int | None = None
    dead_letter_exchange: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)

    def build_arguments(self) -> dict[str, Any]:
        arguments = dict(self.arguments)
        if self.message_ttl is not None:
            arguments["x-message-ttl"] = self.message_ttl
        if self.dead_letter_exchange:
            arguments["x-dead-letter-exchange"] = self.dead_letter_exchange
        return arguments


@dataclass(frozen=True)
class TopologyConfig:
    """Routing structure the consumer declares on every connect."""

    exchange_name: str
    queue_name: str
    dead_letter_exchange: str
    dead_letter_queue: str
    message_ttl_ms: int = 300000
    binding_keys: tuple[str, ...] = ("#",)

    @classmethod
    def from_settings(cls, settings: AuditSettings) -> TopologyConfig:
        return cls(
            exchange_name=settings.exchange_name,
            queue_name=settings.queue_name,
            dead_letter_exchange=settings.dead_letter_exchange,
            dead_letter_queue=settings.dead_letter_queue,
            message_ttl_ms=settings.message_ttl_ms,
            binding_keys=tuple(settings.binding_keys),
        )


@dataclass
class ConsumerState:
    """Counters and flags owned by the consumption loop."""

    accepting: bool = False
    started_at: datetime | None = None
    messages_received: int = 0
    messages_acked: int = 0
    messages_dead_lettered: int = 0
    decode_failures: int = 0
    in_flight: int = 0
    last_message_at: datetime | None = None
    last_error: str | None = None

    def snapshot(self) -> ConsumerState:
        """Copy for readers outside the consumer."""
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "last_message_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
