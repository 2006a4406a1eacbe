"""
Tests for RecurringObligationProcessor (spendflow/workflows/obligations.py).

Covers:
- Charging due recurring expenses (debit, credit, credit without limit, overdraft)
- Exactly-once per month, including a run working from a stale snapshot
- Atomicity: insufficient funds and failures leave no partial writes
- Missing funding cards (logged, not notified)
- Failure isolation between obligations
- Credit-card auto-payments
- Look-ahead insufficient-funds and low-balance warnings with de-duplication
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from spendflow.lib.circuit_breaker import CircuitState
from spendflow.lib.exceptions import QuotaExceededError, TransientStoreError
from spendflow.models import (
    AutopayAmount,
    Card,
    CreditCardPayment,
    Notification,
    NotificationType,
    ObligationError,
    PaymentStatus,
    RecurringExpense,
    Transaction,
    TransactionType,
    User,
)
from spendflow.workflows.obligations import (
    Outcome,
    RecurringObligationProcessor,
    card_payment_due,
)

TODAY = date(2024, 5, 15)


@pytest.fixture()
def processor(ctx):
    return RecurringObligationProcessor(ctx)


async def _notifications(store, type: NotificationType) -> list[Notification]:
    return await store.query(Notification, type=type.value)


# =============================================================================
# Recurring expenses
# =============================================================================


class TestRecurringExpenses:
    @pytest.mark.asyncio
    async def test_charges_due_expense(self, processor, store, factory):
        await factory.user()
        card = await factory.debit_card(balance=Decimal("1000.00"))
        expense = await factory.expense(card, amount=Decimal("15.99"))

        report = await processor.process("user-1")

        assert [r.outcome for r in report.results] == [Outcome.PROCESSED]
        assert (await store.get(Card, card.id)).balance == Decimal("984.01")
        assert (await store.get(RecurringExpense, expense.id)).last_processed == TODAY

        transactions = await store.query(Transaction, recurring_expense_id=expense.id)
        assert len(transactions) == 1
        txn = transactions[0]
        assert txn.type == TransactionType.EXPENSE.value
        assert txn.amount == Decimal("15.99")
        assert txn.date == TODAY
        assert txn.is_recurring is True
        assert txn.category == "Entertainment"

    @pytest.mark.asyncio
    async def test_second_run_same_month_charges_nothing(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("1000.00"))
        await factory.expense(card, amount=Decimal("15.99"))

        await processor.process("user-1")
        report = await processor.process("user-1")

        assert report.results == []
        assert len(await store.query(Transaction)) == 1
        assert (await store.get(Card, card.id)).balance == Decimal("984.01")

    @pytest.mark.asyncio
    async def test_stale_snapshot_is_skipped(self, processor, store, factory):
        """Two runs working from the same pre-run snapshot charge once."""
        card = await factory.debit_card(balance=Decimal("100.00"))
        expense = await factory.expense(card, amount=Decimal("40.00"))
        snapshot = await store.get(RecurringExpense, expense.id)

        first = await processor._process_expense(snapshot, TODAY, "GBP")
        second = await processor._process_expense(snapshot, TODAY, "GBP")

        assert first.outcome == Outcome.PROCESSED
        assert second.outcome == Outcome.SKIPPED
        assert len(await store.query(Transaction)) == 1
        assert (await store.get(Card, card.id)).balance == Decimal("60.00")

    @pytest.mark.asyncio
    async def test_next_month_charges_again(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("100.00"))
        await factory.expense(card, amount=Decimal("10.00"))

        await processor.process("user-1", today=TODAY)
        await processor.process("user-1", today=date(2024, 6, 15))

        assert len(await store.query(Transaction)) == 2
        assert (await store.get(Card, card.id)).balance == Decimal("80.00")

    @pytest.mark.asyncio
    async def test_credit_card_balance_increases(self, processor, store, factory):
        card = await factory.credit_card(balance=Decimal("100.00"), credit_limit=Decimal("2000.00"))
        await factory.expense(card, amount=Decimal("15.99"))

        await processor.process("user-1")

        assert (await store.get(Card, card.id)).balance == Decimal("115.99")

    @pytest.mark.asyncio
    async def test_credit_card_without_limit_uses_debit_semantics(self, processor, store, factory):
        card = await factory.credit_card(balance=Decimal("100.00"), credit_limit=None)
        await factory.expense(card, amount=Decimal("15.99"))

        await processor.process("user-1")

        assert (await store.get(Card, card.id)).balance == Decimal("84.01")

    @pytest.mark.asyncio
    async def test_overdraft_counts_as_available(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("10.00"), overdraft_limit=Decimal("10.00"))
        await factory.expense(card, amount=Decimal("15.99"))

        report = await processor.process("user-1")

        assert report.processed
        assert (await store.get(Card, card.id)).balance == Decimal("-5.99")

    @pytest.mark.asyncio
    async def test_short_month_fires_on_last_day(self, processor, store, factory):
        card = await factory.debit_card()
        expense = await factory.expense(card, day_of_month=31)

        report = await processor.process("user-1", today=date(2024, 4, 30))

        assert [r.obligation_id for r in report.processed] == [expense.id]
        assert (await store.get(RecurringExpense, expense.id)).last_processed == date(2024, 4, 30)


# =============================================================================
# Insufficient funds, missing references, failures
# =============================================================================


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_insufficient_funds_leaves_no_trace(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("10.00"))
        expense = await factory.expense(card, amount=Decimal("15.99"))

        report = await processor.process("user-1")

        assert [r.outcome for r in report.results] == [Outcome.INSUFFICIENT_FUNDS]
        assert (await store.get(Card, card.id)).balance == Decimal("10.00")
        assert (await store.get(RecurringExpense, expense.id)).last_processed is None
        assert await store.query(Transaction) == []

        warnings = await _notifications(store, NotificationType.INSUFFICIENT_FUNDS_WARNING)
        assert len(warnings) == 1
        assert warnings[0].data["days_until"] == 0
        assert warnings[0].data["obligation_id"] == expense.id
        assert warnings[0].data["shortfall"] == "5.99"

    @pytest.mark.asyncio
    async def test_insufficient_funds_warning_sent_once_per_day(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("10.00"))
        await factory.expense(card, amount=Decimal("15.99"))

        await processor.process("user-1")
        report = await processor.process("user-1")

        assert report.results[0].outcome == Outcome.INSUFFICIENT_FUNDS
        assert len(await _notifications(store, NotificationType.INSUFFICIENT_FUNDS_WARNING)) == 1

    @pytest.mark.asyncio
    async def test_retried_after_funds_arrive(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("10.00"))
        await factory.expense(card, amount=Decimal("15.99"))

        await processor.process("user-1")
        await store.update(Card, card.id, balance=Decimal("100.00"))
        report = await processor.process("user-1")

        assert report.results[0].outcome == Outcome.PROCESSED
        assert (await store.get(Card, card.id)).balance == Decimal("84.01")

    @pytest.mark.asyncio
    async def test_missing_card_is_logged_not_notified(self, processor, store, factory):
        card = await factory.debit_card()
        expense = await factory.expense(card)
        await store.delete(Card, card.id)

        report = await processor.process("user-1")

        assert [r.outcome for r in report.results] == [Outcome.MISSING_REFERENCE]
        assert (await store.get(RecurringExpense, expense.id)).last_processed is None
        errors = await store.query(ObligationError, obligation_id=expense.id)
        assert len(errors) == 1
        assert "not found" in errors[0].error
        assert await store.query(Notification) == []

    @pytest.mark.asyncio
    async def test_card_of_another_user_is_missing(self, processor, store, factory):
        theirs = await factory.debit_card(user_id="user-2")
        mine = await factory.debit_card()
        expense = await factory.expense(mine)
        await store.update(RecurringExpense, expense.id, card_id=theirs.id)

        report = await processor.process("user-1")

        assert report.results[0].outcome == Outcome.MISSING_REFERENCE
        assert (await store.get(Card, theirs.id)).balance == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_inactive_card_is_missing(self, processor, factory):
        card = await factory.debit_card(is_active=False)
        await factory.expense(card)

        report = await processor.process("user-1")

        assert report.results[0].outcome == Outcome.MISSING_REFERENCE

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_rest(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("1000.00"))
        broken = await factory.expense(card, name="Broken", amount=Decimal("50.00"))
        fine = await factory.expense(card, name="Fine", amount=Decimal("20.00"))
        original = processor._charge

        async def flaky(tx, expense, charged_card, today):
            if expense.name == "Broken":
                raise RuntimeError("disk on fire")
            await original(tx, expense, charged_card, today)

        with patch.object(processor, "_charge", flaky):
            report = await processor.process("user-1")

        outcomes = {r.name: r.outcome for r in report.results}
        assert outcomes == {"Broken": Outcome.FAILED, "Fine": Outcome.PROCESSED}
        assert (await store.get(Card, card.id)).balance == Decimal("980.00")
        assert (await store.get(RecurringExpense, broken.id)).last_processed is None
        assert (await store.get(RecurringExpense, fine.id)).last_processed == TODAY

        assert len(await store.query(ObligationError, obligation_id=broken.id)) == 1
        failed = await _notifications(store, NotificationType.PAYMENT_FAILED)
        assert len(failed) == 1
        assert failed[0].data["name"] == "Broken"
        # internal error text is not shown to the user
        assert "disk on fire" not in failed[0].message

    @pytest.mark.asyncio
    async def test_store_failure_at_start_aborts_quietly(self, processor, store, factory):
        card = await factory.debit_card()
        await factory.expense(card)

        with patch.object(store, "query", AsyncMock(side_effect=TransientStoreError("locked"))):
            report = await processor.process("user-1")

        assert report.aborted is True
        assert report.results == []

    @pytest.mark.asyncio
    async def test_quota_error_opens_breaker_and_pauses_background_writes(
        self, processor, ctx, store, factory
    ):
        card = await factory.debit_card(balance=Decimal("100.00"))
        await factory.expense(card, name="Due", amount=Decimal("15.99"))
        await factory.expense(card, name="Soon", amount=Decimal("200.00"), day_of_month=16)

        quota = AsyncMock(side_effect=QuotaExceededError("quota exceeded"))
        with patch.object(processor, "_charge", quota):
            report = await processor.process("user-1", user_email="a@example.com")

        assert [r.outcome for r in report.results] == [Outcome.FAILED]
        assert ctx.quota_breaker.state == CircuitState.OPEN
        assert report.warnings_sent == 0
        assert await _notifications(store, NotificationType.INSUFFICIENT_FUNDS_WARNING) == []
        assert await store.get(User, "user-1") is None
        # the failure itself is still reported
        assert len(await _notifications(store, NotificationType.PAYMENT_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_ordinary_failure_leaves_breaker_closed(self, processor, ctx, factory):
        card = await factory.debit_card()
        await factory.expense(card)

        with patch.object(processor, "_charge", AsyncMock(side_effect=RuntimeError("boom"))):
            await processor.process("user-1")

        assert ctx.quota_breaker.state == CircuitState.CLOSED


# =============================================================================
# Credit-card auto-payments
# =============================================================================


async def _autopay_cards(factory, funding_balance="1000.00", **credit_values):
    funding = await factory.debit_card(name="Current", balance=Decimal(funding_balance))
    credit_values.setdefault("balance", Decimal("500.00"))
    credit = await factory.credit_card(
        payment_due_day=TODAY.day,
        auto_pay_enabled=True,
        payment_debit_card_id=funding.id,
        **credit_values,
    )
    return funding, credit


class TestAutopay:
    @pytest.mark.asyncio
    async def test_minimum_payment(self, processor, store, factory):
        funding, credit = await _autopay_cards(factory)

        report = await processor.process("user-1")

        assert [(r.outcome, r.amount) for r in report.results] == [
            (Outcome.PROCESSED, Decimal("25.00"))
        ]
        assert (await store.get(Card, funding.id)).balance == Decimal("975.00")
        credit_after = await store.get(Card, credit.id)
        assert credit_after.balance == Decimal("475.00")
        assert credit_after.last_autopay_date == TODAY

        payments = await store.query(CreditCardPayment, credit_card_id=credit.id)
        assert [(p.status, p.amount) for p in payments] == [
            (PaymentStatus.COMPLETED.value, Decimal("25.00"))
        ]
        types = sorted(t.type for t in await store.query(Transaction))
        assert types == [TransactionType.INCOME.value, TransactionType.TRANSFER.value]
        assert len(await _notifications(store, NotificationType.PAYMENT_SUCCESS)) == 1

    @pytest.mark.asyncio
    async def test_statement_balance(self, processor, store, factory):
        funding, credit = await _autopay_cards(
            factory, autopay_amount=AutopayAmount.STATEMENT_BALANCE.value
        )

        await processor.process("user-1")

        assert (await store.get(Card, credit.id)).balance == Decimal("0.00")
        assert (await store.get(Card, funding.id)).balance == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_paid_once_per_month(self, processor, store, factory):
        await _autopay_cards(factory)

        await processor.process("user-1")
        await processor.process("user-1")

        assert len(await store.query(CreditCardPayment)) == 1

    @pytest.mark.asyncio
    async def test_insufficient_funding(self, processor, store, factory):
        funding, credit = await _autopay_cards(factory, funding_balance="10.00")

        report = await processor.process("user-1")

        assert report.results[0].outcome == Outcome.INSUFFICIENT_FUNDS
        assert (await store.get(Card, funding.id)).balance == Decimal("10.00")
        credit_after = await store.get(Card, credit.id)
        assert credit_after.balance == Decimal("500.00")
        assert credit_after.last_autopay_date is None
        assert await store.query(CreditCardPayment) == []
        warnings = await _notifications(store, NotificationType.INSUFFICIENT_FUNDS_WARNING)
        assert warnings[0].data["card_id"] == funding.id

    @pytest.mark.asyncio
    async def test_missing_funding_card(self, processor, store, factory):
        funding, credit = await _autopay_cards(factory)
        await store.delete(Card, funding.id)

        report = await processor.process("user-1")

        assert report.results[0].outcome == Outcome.MISSING_REFERENCE
        assert (await store.get(Card, credit.id)).last_autopay_date is None
        assert await store.query(Notification) == []

    @pytest.mark.asyncio
    async def test_card_cannot_fund_itself(self, processor, store, factory):
        credit = await factory.credit_card(
            balance=Decimal("500.00"), payment_due_day=TODAY.day, auto_pay_enabled=True
        )
        await store.update(Card, credit.id, payment_debit_card_id=credit.id)

        report = await processor.process("user-1")

        assert report.results[0].outcome == Outcome.FAILED
        payments = await store.query(CreditCardPayment, credit_card_id=credit.id)
        assert [p.status for p in payments] == [PaymentStatus.FAILED.value]
        assert (await store.get(Card, credit.id)).balance == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_nothing_owed_is_not_an_obligation(self, processor, store, factory):
        await _autopay_cards(factory, balance=Decimal("0.00"))

        report = await processor.process("user-1")

        assert report.results == []
        assert await store.query(CreditCardPayment) == []

    @pytest.mark.asyncio
    async def test_paid_off_since_snapshot_rolls_back(self, processor, store, factory):
        _, credit = await _autopay_cards(factory)
        stale = await store.get(Card, credit.id)
        await store.update(Card, credit.id, balance=Decimal("0.00"))

        result = await processor._process_card_payment(stale, TODAY, "GBP")

        assert result.outcome == Outcome.SKIPPED
        assert result.detail == "nothing owed"
        assert (await store.get(Card, credit.id)).last_autopay_date is None
        assert await store.query(CreditCardPayment) == []
        assert await store.query(Transaction) == []
        assert await _notifications(store, NotificationType.PAYMENT_SUCCESS) == []

    @pytest.mark.asyncio
    async def test_card_payment_due(self, factory):
        _, credit = await _autopay_cards(factory)
        assert card_payment_due(credit, TODAY) is True
        assert card_payment_due(credit, date(2024, 5, 14)) is False


# =============================================================================
# Look-ahead warnings and activity
# =============================================================================


class TestUpcomingWarnings:
    @pytest.mark.asyncio
    async def test_insufficient_funds_ahead(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("100.00"))
        await factory.expense(card, amount=Decimal("80.00"), day_of_month=17)
        await factory.expense(card, amount=Decimal("40.00"), day_of_month=18)

        report = await processor.process("user-1")

        assert report.warnings_sent == 1
        warnings = await _notifications(store, NotificationType.INSUFFICIENT_FUNDS_WARNING)
        assert len(warnings) == 1
        assert warnings[0].data["required"] == "120.00"
        assert warnings[0].data["days_until"] == 2

        again = await processor.process("user-1")
        assert again.warnings_sent == 0

    @pytest.mark.asyncio
    async def test_skipped_while_quota_breaker_open(self, processor, ctx, store, factory):
        card = await factory.debit_card(balance=Decimal("10.00"))
        await factory.expense(card, amount=Decimal("80.00"), day_of_month=17)
        await ctx.quota_breaker.trip()

        skipped = await processor.process("user-1")
        assert skipped.warnings_sent == 0

        await ctx.quota_breaker.reset()
        resumed = await processor.process("user-1")
        assert resumed.warnings_sent == 1

    @pytest.mark.asyncio
    async def test_outside_lookahead_is_ignored(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("10.00"))
        await factory.expense(card, amount=Decimal("80.00"), day_of_month=25)

        report = await processor.process("user-1")

        assert report.warnings_sent == 0

    @pytest.mark.asyncio
    async def test_low_balance_after_upcoming(self, processor, store, factory):
        card = await factory.debit_card(balance=Decimal("100.00"))
        await factory.expense(card, amount=Decimal("60.00"), day_of_month=16)

        await processor.process("user-1")

        low = await _notifications(store, NotificationType.LOW_BALANCE)
        assert len(low) == 1
        assert low[0].data["available"] == "40.00"

    @pytest.mark.asyncio
    async def test_upcoming_autopay_counts_against_funding(self, processor, store, factory):
        funding = await factory.debit_card(balance=Decimal("10.00"))
        await factory.credit_card(
            balance=Decimal("500.00"),
            payment_due_day=17,
            auto_pay_enabled=True,
            payment_debit_card_id=funding.id,
        )

        report = await processor.process("user-1")

        assert report.warnings_sent == 1
        warning = (await _notifications(store, NotificationType.INSUFFICIENT_FUNDS_WARNING))[0]
        assert warning.data["card_id"] == funding.id
        assert warning.data["required"] == "25.00"


@pytest.mark.asyncio
async def test_run_records_activity(processor, store):
    await processor.process("user-1", user_email="a@example.com")
    user = await store.get(User, "user-1")
    assert user.last_active_at is not None
    assert user.email == "a@example.com"


@pytest.mark.asyncio
async def test_report_to_dict(processor, factory):
    card = await factory.debit_card()
    await factory.expense(card)
    data = (await processor.process("user-1")).to_dict()
    assert data["run_date"] == "2024-05-15"
    assert data["counts"]["processed"] == 1
    assert data["counts"]["failed"] == 0
    assert data["results"][0]["amount"] == "15.99"
