"""
Health Check Service for SpendFlow.

Used by container healthchecks and load balancers via ``GET /health``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from spendflow.lib.circuit_breaker import CircuitBreaker, CircuitState
from spendflow.services.document_store import DocumentStore

logger = logging.getLogger(__name__)


class ServiceStatus(Enum):
    """Service health status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    """Result of a health check for a single service."""

    service_name: str
    status: ServiceStatus
    message: str
    response_time_ms: float
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service_name,
            "status": self.status.value,
            "message": self.message,
            "response_time_ms": round(self.response_time_ms, 2),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class SystemHealthReport:
    """Overall system health report."""

    status: ServiceStatus
    services: list[HealthCheckResult]
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "services": [s.to_dict() for s in self.services],
        }


class HealthCheckService:
    """
    Checks the document store and reports the quota breaker state.

    An open quota breaker degrades the service (non-essential writes are
    being skipped) but does not make it unhealthy.
    """

    def __init__(
        self,
        store: DocumentStore,
        quota_breaker: CircuitBreaker | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.store = store
        self.quota_breaker = quota_breaker
        self.timeout = timeout_seconds

    async def check_store(self) -> HealthCheckResult:
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        try:
            await asyncio.wait_for(self.store.ping(), timeout=self.timeout)
            status, message = ServiceStatus.HEALTHY, "Database connection successful"
        except TimeoutError:
            status, message = ServiceStatus.UNHEALTHY, f"Connection timeout after {self.timeout}s"
        except Exception as e:
            logger.exception("Store health check failed")
            status, message = ServiceStatus.UNHEALTHY, f"Health check failed: {e}"
        return HealthCheckResult(
            service_name="database",
            status=status,
            message=message,
            response_time_ms=(loop.time() - start_time) * 1000,
            timestamp=datetime.now(UTC),
        )

    def check_quota(self) -> HealthCheckResult:
        state = self.quota_breaker.state if self.quota_breaker else CircuitState.CLOSED
        healthy = state == CircuitState.CLOSED
        return HealthCheckResult(
            service_name="store_quota",
            status=ServiceStatus.HEALTHY if healthy else ServiceStatus.DEGRADED,
            message=f"Quota circuit {state.value}",
            response_time_ms=0.0,
            timestamp=datetime.now(UTC),
        )

    async def check_all(self) -> SystemHealthReport:
        services = [await self.check_store(), self.check_quota()]
        statuses = {s.status for s in services}
        if ServiceStatus.UNHEALTHY in statuses:
            overall = ServiceStatus.UNHEALTHY
        elif ServiceStatus.DEGRADED in statuses:
            overall = ServiceStatus.DEGRADED
        else:
            overall = ServiceStatus.HEALTHY
        return SystemHealthReport(status=overall, services=services, timestamp=datetime.now(UTC))
