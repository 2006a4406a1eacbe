"""
Payment history and failed-attempt log for SpendFlow.

- CreditCardPayment: one row per auto-payment made to a credit card
- ObligationError: one row per obligation that could not be processed
"""

from __future__ import annotations

from datetime import date
from enum import StrEnum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, Text

from spendflow.models.base import Base, new_id, utcnow


class PaymentStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"


class ObligationKind(StrEnum):
    RECURRING_EXPENSE = "recurring_expense"
    CARD_PAYMENT = "card_payment"


class CreditCardPayment(Base):
    """Transfer from a funding card to a credit card."""

    __tablename__ = "credit_card_payments"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    credit_card_id = Column(String(32), nullable=False, index=True)
    debit_card_id = Column(String(32), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    status = Column(String(10), nullable=False, default=PaymentStatus.COMPLETED.value)
    error = Column(Text, nullable=True)
    payment_date = Column(Date, nullable=False, default=date.today)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ObligationError(Base):
    """
    Failed processing attempt.

    Attributes:
        obligation_id: RecurringExpense id or credit Card id
        obligation_kind: recurring_expense | card_payment
        error: Error text (never contains card numbers or e-mail)
    """

    __tablename__ = "obligation_errors"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    obligation_id = Column(String(32), nullable=False)
    obligation_kind = Column(String(20), nullable=False)
    name = Column(String(200), nullable=False, default="")
    amount = Column(Numeric(14, 2), nullable=True)
    error = Column(Text, nullable=False)
    attempted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
