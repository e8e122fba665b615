"""Prometheus metrics for the consumption loop and audit store."""

from __future__ import annotations

import structlog
from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = structlog.get_logger(__name__)

MESSAGES_PROCESSED = Counter(
    "audit_messages_processed_total",
    "Deliveries settled by the audit consumer",
    ["event_type", "outcome"],
)
ENTRIES_PERSISTED = Counter(
    "audit_entries_persisted_total",
    "Audit entries written to the store",
    ["resource_type", "severity"],
)
PROCESSING_SECONDS = Histogram(
    "audit_message_processing_seconds",
    "Time from delivery to ack or nack",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
IN_FLIGHT = Gauge(
    "audit_messages_in_flight",
    "Deliveries currently being processed",
)

OUTCOME_ACKED = "acked"
OUTCOME_DEAD_LETTERED = "dead_lettered"


def record_settlement(event_type: str, outcome: str, duration: float) -> None:
    MESSAGES_PROCESSED.labels(event_type=event_type, outcome=outcome).inc()
    PROCESSING_SECONDS.observe(duration)


def record_persisted(resource_type: str, severity: str) -> None:
    ENTRIES_PERSISTED.labels(resource_type=resource_type, severity=severity).inc()


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP."""
    start_http_server(port)
    logger.info("metrics.server.started", port=port)
