"""Tests for HealthCheckService (spendflow/infra/health.py)."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from spendflow.infra.health import HealthCheckService, ServiceStatus
from spendflow.lib.circuit_breaker import quota_breaker
from spendflow.lib.exceptions import TransientStoreError


@pytest.mark.asyncio
async def test_all_healthy(store):
    report = await HealthCheckService(store, quota_breaker()).check_all()
    assert report.status == ServiceStatus.HEALTHY
    assert [s.service_name for s in report.services] == ["database", "store_quota"]


@pytest.mark.asyncio
async def test_open_quota_breaker_degrades(store):
    breaker = quota_breaker(recovery_timeout=None)
    await breaker.trip()
    report = await HealthCheckService(store, breaker).check_all()
    assert report.status == ServiceStatus.DEGRADED
    assert report.to_dict()["services"][1]["message"] == "Quota circuit open"


@pytest.mark.asyncio
async def test_store_failure_is_unhealthy(store):
    with patch.object(store, "ping", AsyncMock(side_effect=TransientStoreError("down"))):
        report = await HealthCheckService(store).check_all()
    assert report.status == ServiceStatus.UNHEALTHY
