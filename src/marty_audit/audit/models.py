"""Database model for persisted audit entries."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLogRecord(Base):
    """Append-only audit log row."""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(255), nullable=True)
    event_type = Column(String(255), nullable=False)
    action_type = Column(String(100), nullable=False)
    service_name = Column(String(100), nullable=False)
    # Actor
    user_id = Column(String(255))
    user_type = Column(String(20), nullable=False, default="customer")
    session_id = Column(String(255))
    # Subject
    resource_type = Column(String(100), nullable=False)
    resource_id = Column(String(255))
    # Provenance
    correlation_id = Column(String(255), nullable=False, default="unknown")
    ip_address = Column(String(45))
    user_agent = Column(Text)
    event_data = Column(JSONVariant, nullable=False, default=dict)
    # Classification
    severity = Column(String(20), nullable=False)
    compliance_tags = Column(JSONVariant, nullable=False, default=list)
    # Outcome
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text)
    # Time
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    retention_until = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_audit_logs_service_occurred", "service_name", "occurred_at"),
        Index("ix_audit_logs_user_occurred", "user_id", "occurred_at"),
        Index("ix_audit_logs_correlation", "correlation_id"),
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        Index("ix_audit_logs_retention", "retention_until"),
        Index("ux_audit_logs_event_id", "event_id", unique=True),
    )
