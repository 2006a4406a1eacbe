"""
Tests for ActivityService (spendflow/services/activity.py).

last_active_at is a non-essential write guarded by the quota circuit
breaker: quota errors open the breaker and later touches are skipped.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from spendflow.lib.circuit_breaker import CircuitState
from spendflow.lib.exceptions import QuotaExceededError
from spendflow.models import User
from spendflow.services.activity import ActivityService


@pytest.mark.asyncio
async def test_touch_creates_user(ctx, store):
    assert await ActivityService(ctx).touch("user-1", "a@example.com") is True
    user = await store.get(User, "user-1")
    assert user.email == "a@example.com"
    assert user.currency == "GBP"
    assert user.last_active_at is not None


@pytest.mark.asyncio
async def test_touch_updates_existing_user(ctx, store, factory):
    await factory.user("user-1", email="old@example.com")
    assert await ActivityService(ctx).touch("user-1", "new@example.com") is True
    user = await store.get(User, "user-1")
    assert user.email == "new@example.com"
    assert user.last_active_at is not None


@pytest.mark.asyncio
async def test_quota_error_opens_breaker_and_skips_later_touches(ctx, store):
    service = ActivityService(ctx)
    with patch.object(store, "create", AsyncMock(side_effect=QuotaExceededError("quota exceeded"))):
        assert await service.touch("user-1") is False
    assert ctx.quota_breaker.state == CircuitState.OPEN

    # the breaker now short-circuits without touching the store
    with patch.object(store, "get", AsyncMock()) as get:
        assert await service.touch("user-1") is False
        get.assert_not_called()


@pytest.mark.asyncio
async def test_breaker_reset_resumes_touches(ctx, store):
    await ctx.quota_breaker.trip()
    service = ActivityService(ctx)
    assert await service.touch("user-1") is False
    await ctx.quota_breaker.reset()
    assert await service.touch("user-1") is True
    assert await store.get(User, "user-1") is not None
