"""
Recurring Obligation Processor for SpendFlow.

Charges recurring expenses and makes credit-card auto-payments that fall due
today, exactly once per calendar month per obligation.

Each obligation is one atomic unit inside a store transaction:

    1. claim: compare-and-set the idempotency marker (last_processed or
       last_autopay_date) from "not this month" to today
    2. resolve and check the funding card
    3. write the transaction(s) and move the balance(s)

The claim is the first write, so a concurrent run that lost the race sees
the marker already set and skips; an error at any step rolls the claim back
with everything else. A failure on one obligation never stops the others,
and nothing propagates out of process().
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy import or_
from sqlalchemy.sql import ColumnElement

from spendflow.core.context import ProcessingContext
from spendflow.infra.monitoring import record_obligation, track_processor_run
from spendflow.lib.circuit_breaker import is_quota_error
from spendflow.lib.dates import is_trigger_day, month_bounds, same_month
from spendflow.lib.exceptions import (
    CircuitOpenError,
    InsufficientFundsError,
    NotFoundError,
    SpendflowError,
    StoreError,
    TransientStoreError,
    ValidationError,
)
from spendflow.lib.logging import log_context
from spendflow.lib.money import ZERO
from spendflow.lib.security import hash_uid
from spendflow.models import (
    Card,
    CreditCardPayment,
    NotificationType,
    ObligationError,
    ObligationKind,
    PaymentStatus,
    RecurringExpense,
    Transaction,
    TransactionType,
    User,
)
from spendflow.services.activity import ActivityService
from spendflow.services.cards import days_until_payment
from spendflow.services.document_store import StoreTransaction
from spendflow.services.recurring_expenses import next_occurrence

logger = logging.getLogger(__name__)

# Longest error text kept in the failed-attempts log
_MAX_ERROR_LENGTH = 500


class _NothingOwed(Exception):
    """Raised inside a claim to roll it back when the fresh balance is settled."""


class Outcome(StrEnum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    FAILED = "failed"
    MISSING_REFERENCE = "missing_reference"


@dataclass
class ObligationResult:
    """What happened to one obligation in one run."""

    obligation_id: str
    kind: ObligationKind
    name: str
    amount: Decimal
    outcome: Outcome = Outcome.PROCESSED
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "obligation_id": self.obligation_id,
            "kind": self.kind.value,
            "name": self.name,
            "amount": str(self.amount),
            "outcome": self.outcome.value,
            "detail": self.detail,
        }


@dataclass
class ProcessingReport:
    """Result of one processor run for one user."""

    user_id: str
    run_date: date
    results: list[ObligationResult] = field(default_factory=list)
    warnings_sent: int = 0
    aborted: bool = False

    def add(self, result: ObligationResult) -> None:
        self.results.append(result)
        record_obligation(result.kind.value, result.outcome.value)

    def with_outcome(self, outcome: Outcome) -> list[ObligationResult]:
        return [result for result in self.results if result.outcome == outcome]

    @property
    def processed(self) -> list[ObligationResult]:
        return self.with_outcome(Outcome.PROCESSED)

    @property
    def failed(self) -> list[ObligationResult]:
        return self.with_outcome(Outcome.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_date": self.run_date.isoformat(),
            "aborted": self.aborted,
            "warnings_sent": self.warnings_sent,
            "counts": {outcome.value: len(self.with_outcome(outcome)) for outcome in Outcome},
            "results": [result.to_dict() for result in self.results],
        }


def marker_is_open(column: Any, today: date) -> ColumnElement[bool]:
    """SQL condition: the marker is unset or not inside today's month."""
    start, next_start = month_bounds(today)
    return or_(column.is_(None), column < start, column >= next_start)


def card_payment_due(card: Card, today: date) -> bool:
    """Auto-payment is configured, due today, and not yet made this month."""
    return (
        card.is_credit
        and bool(card.is_active)
        and bool(card.auto_pay_enabled)
        and bool(card.payment_debit_card_id)
        and card.payment_due_day is not None
        and is_trigger_day(card.payment_due_day, today)
        and not same_month(card.last_autopay_date, today)
    )


def _user_facing_error(exc: Exception) -> str:
    if isinstance(exc, TransientStoreError):
        return "A temporary storage problem occurred. It will be retried on the next run."
    if isinstance(exc, ValidationError):
        return str(exc)
    return "An unexpected error occurred."


class RecurringObligationProcessor:
    """
    Processes every due obligation of one user.

    Usage:
        processor = RecurringObligationProcessor(ctx)
        report = await processor.process(user_id, user_email)
    """

    def __init__(self, ctx: ProcessingContext) -> None:
        self.ctx = ctx
        self.store = ctx.store
        self.notifications = ctx.notifications
        self.activity = ActivityService(ctx)

    async def process(
        self,
        user_id: str,
        user_email: str | None = None,
        today: date | None = None,
    ) -> ProcessingReport:
        """
        Run the processor for ``user_id`` as of ``today`` (defaults to the context clock).

        Safe to call any number of times a day, from any number of sessions.
        """
        today = today or self.ctx.today()
        report = ProcessingReport(user_id=user_id, run_date=today)

        run_log = log_context(user_hash=hash_uid(user_id), run_date=today.isoformat())
        with run_log, track_processor_run():
            try:
                currency = await self._currency_for(user_id)
                expenses = await self.store.query(
                    RecurringExpense,
                    order_by=RecurringExpense.day_of_month,
                    user_id=user_id,
                    is_active=True,
                )
                cards = await self.store.query(Card, user_id=user_id, is_active=True)
            except StoreError:
                logger.exception("obligation_run_aborted user_hash=%s", hash_uid(user_id))
                report.aborted = True
                return report

            for expense in expenses:
                if expense.is_due(today):
                    report.add(await self._process_expense(expense, today, currency))

            for card in cards:
                if card_payment_due(card, today):
                    result = await self._process_card_payment(card, today, currency)
                    if result is not None:
                        report.add(result)

            report.warnings_sent = await self._check_upcoming(user_id, today, currency)

        await self.activity.touch(user_id, user_email)
        logger.info(
            "obligation_run_complete user_hash=%s processed=%d failed=%d warnings=%d",
            hash_uid(user_id),
            len(report.processed),
            len(report.failed),
            report.warnings_sent,
        )
        return report

    async def _currency_for(self, user_id: str) -> str:
        user = await self.store.get(User, user_id)
        if user is not None and user.currency:
            return user.currency
        return self.ctx.settings.default_currency

    # ------------------------------------------------------------------
    # Recurring expenses
    # ------------------------------------------------------------------

    async def _process_expense(
        self, expense: RecurringExpense, today: date, currency: str
    ) -> ObligationResult:
        result = ObligationResult(
            obligation_id=expense.id,
            kind=ObligationKind.RECURRING_EXPENSE,
            name=expense.name,
            amount=Decimal(expense.amount),
        )
        try:
            async with self.store.transaction() as tx:
                claimed = await tx.compare_and_set(
                    RecurringExpense,
                    expense.id,
                    marker_is_open(RecurringExpense.last_processed, today),
                    last_processed=today,
                )
                if not claimed:
                    result.outcome = Outcome.SKIPPED
                    result.detail = "already processed this month"
                else:
                    card = await self._resolve_card(tx, expense.user_id, expense.card_id)
                    self._ensure_funds(card, result.amount)
                    await self._charge(tx, expense, card, today)
        except NotFoundError as exc:
            return await self._record_missing(result, expense.user_id, exc)
        except InsufficientFundsError as exc:
            return await self._record_insufficient(result, expense.user_id, exc, today, currency)
        except Exception as exc:
            return await self._record_failure(result, expense.user_id, exc, currency)

        if result.outcome == Outcome.PROCESSED:
            logger.info(
                "recurring_expense_charged user_hash=%s expense_id=%s",
                hash_uid(expense.user_id),
                expense.id,
            )
        return result

    async def _charge(
        self, tx: StoreTransaction, expense: RecurringExpense, card: Card, today: date
    ) -> None:
        """Write the expense transaction and move the card balance."""
        amount = Decimal(expense.amount)
        await tx.create(
            Transaction,
            user_id=expense.user_id,
            card_id=card.id,
            amount=amount,
            type=TransactionType.EXPENSE.value,
            category=expense.category,
            description=f"Recurring: {expense.name}",
            date=today,
            is_recurring=True,
            recurring_expense_id=expense.id,
        )
        balance = Decimal(card.balance)
        new_balance = balance + amount if card.owes_balance else balance - amount
        await tx.update(Card, card.id, balance=new_balance)

    # ------------------------------------------------------------------
    # Credit-card auto-payments
    # ------------------------------------------------------------------

    async def _process_card_payment(
        self, card: Card, today: date, currency: str
    ) -> ObligationResult | None:
        """None when nothing is owed."""
        result = ObligationResult(
            obligation_id=card.id,
            kind=ObligationKind.CARD_PAYMENT,
            name=card.display_name,
            amount=card.autopay_due_amount(),
        )
        if result.amount <= ZERO:
            return None
        try:
            async with self.store.transaction() as tx:
                claimed = await tx.compare_and_set(
                    Card,
                    card.id,
                    marker_is_open(Card.last_autopay_date, today),
                    last_autopay_date=today,
                )
                if not claimed:
                    result.outcome = Outcome.SKIPPED
                    result.detail = "already paid this month"
                else:
                    credit_card = await tx.get(Card, card.id)
                    # balance may have moved since the run started
                    result.amount = credit_card.autopay_due_amount()
                    if result.amount <= ZERO:
                        raise _NothingOwed
                    funding = await self._resolve_card(
                        tx, card.user_id, credit_card.payment_debit_card_id
                    )
                    if funding.id == credit_card.id:
                        raise ValidationError("A card cannot fund its own payment.")
                    self._ensure_funds(funding, result.amount)
                    await self._pay(tx, credit_card, funding, result.amount, today, currency)
        except _NothingOwed:
            result.outcome = Outcome.SKIPPED
            result.detail = "nothing owed"
            return result
        except NotFoundError as exc:
            return await self._record_missing(result, card.user_id, exc)
        except InsufficientFundsError as exc:
            return await self._record_insufficient(result, card.user_id, exc, today, currency)
        except Exception as exc:
            return await self._record_failure(
                result, card.user_id, exc, currency, funding_card_id=card.payment_debit_card_id
            )

        if result.outcome == Outcome.PROCESSED:
            logger.info(
                "card_autopay_completed user_hash=%s card_id=%s", hash_uid(card.user_id), card.id
            )
        return result

    async def _pay(
        self,
        tx: StoreTransaction,
        credit_card: Card,
        funding: Card,
        amount: Decimal,
        today: date,
        currency: str,
    ) -> None:
        """Move ``amount`` from ``funding`` to ``credit_card`` and record it."""
        user_id = credit_card.user_id
        funding_balance = Decimal(funding.balance)
        await tx.update(
            Card,
            funding.id,
            balance=funding_balance + amount if funding.owes_balance else funding_balance - amount,
        )
        await tx.update(Card, credit_card.id, balance=Decimal(credit_card.balance) - amount)
        await tx.create(
            Transaction,
            user_id=user_id,
            card_id=funding.id,
            amount=amount,
            type=TransactionType.TRANSFER.value,
            category="Credit Card Payment",
            description=f"Payment to {credit_card.display_name}",
            date=today,
        )
        await tx.create(
            Transaction,
            user_id=user_id,
            card_id=credit_card.id,
            amount=amount,
            type=TransactionType.INCOME.value,
            category="Credit Card Payment",
            description=f"Payment from {funding.display_name}",
            date=today,
        )
        await tx.create(
            CreditCardPayment,
            user_id=user_id,
            credit_card_id=credit_card.id,
            debit_card_id=funding.id,
            amount=amount,
            status=PaymentStatus.COMPLETED.value,
            payment_date=today,
        )
        await self.notifications.notify_payment_success(
            user_id, credit_card, amount, currency=currency, tx=tx
        )

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    @staticmethod
    async def _resolve_card(tx: StoreTransaction, user_id: str, card_id: str | None) -> Card:
        card = await tx.get(Card, card_id) if card_id else None
        if card is None or card.user_id != user_id or not card.is_active:
            raise NotFoundError("Card", card_id or "")
        return card

    @staticmethod
    def _ensure_funds(card: Card, amount: Decimal) -> None:
        available = card.available_funds()
        if available < amount:
            raise InsufficientFundsError(card.id, amount, available)

    async def _log_error(
        self, result: ObligationResult, user_id: str, error: str
    ) -> None:
        try:
            await self.store.create(
                ObligationError,
                user_id=user_id,
                obligation_id=result.obligation_id,
                obligation_kind=result.kind.value,
                name=result.name,
                amount=result.amount,
                error=error[:_MAX_ERROR_LENGTH],
            )
        except StoreError:
            logger.exception(
                "obligation_error_log_failed user_hash=%s obligation_id=%s",
                hash_uid(user_id),
                result.obligation_id,
            )

    async def _record_missing(
        self, result: ObligationResult, user_id: str, exc: NotFoundError
    ) -> ObligationResult:
        """Missing card: skipped and logged, the user is not notified."""
        result.outcome = Outcome.MISSING_REFERENCE
        result.detail = str(exc)
        logger.warning(
            "obligation_reference_missing user_hash=%s obligation_id=%s kind=%s",
            hash_uid(user_id),
            result.obligation_id,
            exc.kind,
        )
        await self._log_error(result, user_id, str(exc))
        return result

    async def _record_insufficient(
        self,
        result: ObligationResult,
        user_id: str,
        exc: InsufficientFundsError,
        today: date,
        currency: str,
    ) -> ObligationResult:
        result.outcome = Outcome.INSUFFICIENT_FUNDS
        result.detail = f"shortfall {exc.shortfall}"
        logger.warning(
            "obligation_insufficient_funds user_hash=%s obligation_id=%s",
            hash_uid(user_id),
            result.obligation_id,
        )
        try:
            already_warned = await self.notifications.exists(
                user_id,
                NotificationType.INSUFFICIENT_FUNDS_WARNING,
                since=today,
                obligation_id=result.obligation_id,
                as_of=today.isoformat(),
            )
            card = await self.store.get(Card, exc.card_id)
            if not already_warned and card is not None:
                await self.notifications.notify_insufficient_funds(
                    user_id,
                    card,
                    exc.required,
                    exc.available,
                    days_until=0,
                    name=result.name,
                    currency=currency,
                    obligation_id=result.obligation_id,
                    as_of=today,
                )
        except StoreError:
            logger.exception("insufficient_funds_warning_failed user_hash=%s", hash_uid(user_id))
        return result

    async def _record_failure(
        self,
        result: ObligationResult,
        user_id: str,
        exc: Exception,
        currency: str,
        funding_card_id: str | None = None,
    ) -> ObligationResult:
        result.outcome = Outcome.FAILED
        result.detail = type(exc).__name__
        if is_quota_error(exc):
            # non-essential writes pause until the breaker lets a probe through
            await self.ctx.quota_breaker.trip()
        logger.exception(
            "obligation_failed user_hash=%s obligation_id=%s kind=%s",
            hash_uid(user_id),
            result.obligation_id,
            result.kind.value,
        )
        await self._log_error(result, user_id, f"{type(exc).__name__}: {exc}")
        try:
            if result.kind == ObligationKind.CARD_PAYMENT and funding_card_id:
                await self.store.create(
                    CreditCardPayment,
                    user_id=user_id,
                    credit_card_id=result.obligation_id,
                    debit_card_id=funding_card_id,
                    amount=result.amount,
                    status=PaymentStatus.FAILED.value,
                    error=f"{type(exc).__name__}: {exc}"[:_MAX_ERROR_LENGTH],
                )
            await self.notifications.notify_failed_payment(
                user_id,
                result.name,
                result.amount,
                _user_facing_error(exc),
                kind=result.kind.value,
                currency=currency,
            )
        except StoreError:
            logger.exception("payment_failed_notification_failed user_hash=%s", hash_uid(user_id))
        return result

    # ------------------------------------------------------------------
    # Look-ahead funding check
    # ------------------------------------------------------------------

    async def _check_upcoming(self, user_id: str, today: date, currency: str) -> int:
        """
        Warn about funding cards that cannot cover obligations due in the next
        ``lookahead_days`` days, and about balances that will end up low.

        Returns:
            Number of notifications sent
        """
        lookahead = self.ctx.settings.lookahead_days
        if lookahead <= 0:
            return 0
        try:
            async with self.ctx.quota_breaker:
                return await self._send_upcoming_warnings(user_id, today, currency, lookahead)
        except CircuitOpenError:
            logger.info("upcoming_funds_check_skipped user_hash=%s", hash_uid(user_id))
            return 0
        except SpendflowError:
            logger.exception("upcoming_funds_check_failed user_hash=%s", hash_uid(user_id))
            return 0

    async def _send_upcoming_warnings(
        self, user_id: str, today: date, currency: str, lookahead: int
    ) -> int:
        active_cards = await self.store.query(Card, user_id=user_id, is_active=True)
        cards = {card.id: card for card in active_cards}
        expenses = await self.store.query(RecurringExpense, user_id=user_id, is_active=True)

        # funding card id -> [(days_until, amount)]
        upcoming: dict[str, list[tuple[int, Decimal]]] = defaultdict(list)
        for expense in expenses:
            due = next_occurrence(expense, today)
            if due is None or expense.card_id not in cards:
                continue
            days_until = (due - today).days
            if 1 <= days_until <= lookahead:
                upcoming[expense.card_id].append((days_until, Decimal(expense.amount)))

        for card in cards.values():
            if not (card.auto_pay_enabled and card.payment_debit_card_id in cards):
                continue
            days_until = days_until_payment(card, today)
            amount = card.autopay_due_amount()
            if days_until is not None and 1 <= days_until <= lookahead and amount > ZERO:
                upcoming[card.payment_debit_card_id].append((days_until, amount))

        threshold = self.ctx.settings.low_balance_threshold
        sent = 0
        for card_id, items in upcoming.items():
            card = cards[card_id]
            required = sum((amount for _, amount in items), ZERO)
            available = card.available_funds()
            soonest = min(days for days, _ in items)
            if available < required:
                warned = await self.notifications.exists(
                    user_id,
                    NotificationType.INSUFFICIENT_FUNDS_WARNING,
                    since=today,
                    card_id=card_id,
                    obligation_id=None,
                    as_of=today.isoformat(),
                )
                if not warned:
                    await self.notifications.notify_insufficient_funds(
                        user_id, card, required, available, soonest, currency=currency, as_of=today
                    )
                    sent += 1
            elif not card.owes_balance and available - required < threshold:
                warned = await self.notifications.exists(
                    user_id,
                    NotificationType.LOW_BALANCE,
                    since=today,
                    card_id=card_id,
                    as_of=today.isoformat(),
                )
                if not warned:
                    await self.notifications.notify_low_balance(
                        user_id, card, available - required, threshold, currency=currency, as_of=today
                    )
                    sent += 1
        return sent
