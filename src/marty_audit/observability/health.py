"""Health status reported by the running service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class HealthStatus:
    """Health check status information."""

    status: str  # "healthy", "unhealthy", "degraded"
    uptime_seconds: float
    version: str
    checks: dict[str, Any]

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "uptime_seconds": self.uptime_seconds,
            "version": self.version,
            "checks": self.checks,
        }
