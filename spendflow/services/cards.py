"""
Card Service for SpendFlow.

Read-side helpers for credit-card auto-payments: next payment date, days
until payment, payment history, and utilization.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import desc

from spendflow.lib.dates import add_months, next_trigger_date, same_month, trigger_date
from spendflow.models import Card, CreditCardPayment
from spendflow.services.document_store import DocumentStore


@dataclass
class NextPayment:
    """Upcoming auto-payment for a credit card."""

    card_id: str
    due_date: date
    days_until: int
    amount: Decimal
    funding_card_id: str | None
    auto_pay_enabled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "card_id": self.card_id,
            "due_date": self.due_date.isoformat(),
            "days_until": self.days_until,
            "amount": str(self.amount),
            "funding_card_id": self.funding_card_id,
            "auto_pay_enabled": self.auto_pay_enabled,
        }


def next_payment_date(card: Card, today: date) -> date | None:
    """
    Next payment due date (today included) for a credit card.

    If this month's payment already went out, the next one is next month's.
    """
    if not card.is_credit or card.payment_due_day is None:
        return None
    due = next_trigger_date(card.payment_due_day, today)
    if same_month(card.last_autopay_date, due):
        due = trigger_date(card.payment_due_day, add_months(due, 1))
    return due


def days_until_payment(card: Card, today: date) -> int | None:
    due = next_payment_date(card, today)
    return None if due is None else (due - today).days


class CardService:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def get(self, user_id: str, card_id: str) -> Card:
        return await self.store.get_owned(Card, card_id, user_id)

    async def next_payment(self, user_id: str, card_id: str, today: date) -> NextPayment | None:
        """None when the card is not a credit card or has no payment day."""
        card = await self.get(user_id, card_id)
        due = next_payment_date(card, today)
        if due is None:
            return None
        return NextPayment(
            card_id=card.id,
            due_date=due,
            days_until=(due - today).days,
            amount=card.autopay_due_amount(),
            funding_card_id=card.payment_debit_card_id,
            auto_pay_enabled=bool(card.auto_pay_enabled),
        )

    async def payment_history(
        self, user_id: str, card_id: str, limit: int = 50
    ) -> list[CreditCardPayment]:
        """Auto-payments made to ``card_id``, newest first."""
        await self.get(user_id, card_id)
        payments = await self.store.query(
            CreditCardPayment,
            order_by=desc(CreditCardPayment.payment_date),
            user_id=user_id,
            credit_card_id=card_id,
        )
        return payments[:limit]

    async def utilization(self, user_id: str, card_id: str) -> float | None:
        card = await self.get(user_id, card_id)
        return card.utilization()
