"""
Shared test fixtures for SpendFlow.

This module provides common fixtures used across all test modules:
- Environment setup (hash salt)
- Settings for the test environment
- In-memory document store with the schema created
- ProcessingContext with a fixed clock
- A small record factory for users, cards, expenses, and budgets

Usage:
    All fixtures are automatically available to any test in the tests/ directory.
"""

from __future__ import annotations

import os
from datetime import date
from decimal import Decimal
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# 1. Environment setup -- must run before any application imports
# ---------------------------------------------------------------------------

os.environ.setdefault("SPENDFLOW_HASH_SALT", "test-salt-for-hashing")

from spendflow.config import Settings  # noqa: E402
from spendflow.core.context import ProcessingContext  # noqa: E402
from spendflow.models import (  # noqa: E402
    Budget,
    Card,
    CardType,
    RecurringExpense,
    User,
)
from spendflow.services.document_store import DocumentStore  # noqa: E402

TODAY = date(2024, 5, 15)
TEST_SECRET_KEY = "test-secret-key-for-jwt-signing-at-least-32-bytes-long"
TEST_WEBHOOK_SECRET = "whsec_test_secret"


# ---------------------------------------------------------------------------
# 2. Settings / store / context
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        environment="test",
        api_secret_key=TEST_SECRET_KEY,
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
        default_currency="GBP",
        lookahead_days=3,
        low_balance_threshold=Decimal("50"),
        quota_recovery_seconds=0,
    )


@pytest.fixture()
async def store():
    """
    Provide a DocumentStore backed by an in-memory SQLite database.

    A fresh database is created for every test; the engine is disposed after.
    """
    store = DocumentStore.from_url("sqlite+aiosqlite:///:memory:")
    await store.init_schema()
    yield store
    await store.dispose()


@pytest.fixture()
def ctx(store: DocumentStore, settings: Settings) -> ProcessingContext:
    """ProcessingContext whose clock is pinned to TODAY."""
    return ProcessingContext.create(store, settings, clock=lambda: TODAY)


# ---------------------------------------------------------------------------
# 3. Record factory
# ---------------------------------------------------------------------------


class RecordFactory:
    """Creates records with sensible defaults; keyword arguments override them."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def user(self, user_id: str = "user-1", **values: Any) -> User:
        values.setdefault("email", f"{user_id}@example.com")
        values.setdefault("currency", "GBP")
        return await self.store.create(User, id=user_id, **values)

    async def debit_card(self, user_id: str = "user-1", **values: Any) -> Card:
        values.setdefault("name", "Everyday")
        values.setdefault("last_four", "4242")
        values.setdefault("balance", Decimal("1000.00"))
        return await self.store.create(Card, user_id=user_id, type=CardType.DEBIT.value, **values)

    async def credit_card(self, user_id: str = "user-1", **values: Any) -> Card:
        values.setdefault("name", "Rewards")
        values.setdefault("last_four", "1111")
        values.setdefault("balance", Decimal("0.00"))
        values.setdefault("credit_limit", Decimal("2000.00"))
        return await self.store.create(Card, user_id=user_id, type=CardType.CREDIT.value, **values)

    async def expense(self, card: Card, **values: Any) -> RecurringExpense:
        values.setdefault("name", "Streaming")
        values.setdefault("amount", Decimal("15.99"))
        values.setdefault("category", "Entertainment")
        values.setdefault("day_of_month", TODAY.day)
        values.setdefault("start_date", date(2024, 1, 1))
        return await self.store.create(
            RecurringExpense, user_id=card.user_id, card_id=card.id, **values
        )

    async def budget(self, user_id: str = "user-1", **values: Any) -> Budget:
        values.setdefault("name", "Fun")
        values.setdefault("category", "Entertainment")
        values.setdefault("amount", Decimal("100.00"))
        return await self.store.create(Budget, user_id=user_id, **values)


@pytest.fixture()
def factory(store: DocumentStore) -> RecordFactory:
    return RecordFactory(store)
