"""
Card Model for SpendFlow.

Balance semantics depend on the card type:
- debit: ``balance`` is money available (plus an optional overdraft)
- credit: ``balance`` is the amount owed against ``credit_limit``
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String

from spendflow.models.base import Base, new_id, utcnow


class CardType(StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"


class AutopayAmount(StrEnum):
    """How much an auto-payment transfers to a credit card."""

    MINIMUM = "minimum"
    STATEMENT_BALANCE = "statement_balance"


# Default minimum payment when the card has none configured
MINIMUM_PAYMENT_RATE = Decimal("0.03")
MINIMUM_PAYMENT_FLOOR = Decimal("25.00")


class Card(Base):
    """
    Payment card.

    Credit-only attributes:
        statement_day / payment_due_day: 1-31, clamped to short months
        auto_pay_enabled: pay the card automatically on payment_due_day
        payment_debit_card_id: funding card for auto-payments
        minimum_payment: fixed minimum, else 3% of balance with a 25.00 floor
        autopay_amount: minimum | statement_balance
        last_autopay_date: idempotency marker for the auto-payment cycle
    """

    __tablename__ = "cards"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False, default="")
    last_four = Column(String(4), nullable=True)
    type = Column(String(10), nullable=False, default=CardType.DEBIT.value)
    balance = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    credit_limit = Column(Numeric(14, 2), nullable=True)
    overdraft_limit = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    is_active = Column(Boolean, nullable=False, default=True)

    statement_day = Column(Integer, nullable=True)
    payment_due_day = Column(Integer, nullable=True)
    auto_pay_enabled = Column(Boolean, nullable=False, default=False)
    payment_debit_card_id = Column(String(32), nullable=True)
    minimum_payment = Column(Numeric(14, 2), nullable=True)
    autopay_amount = Column(String(20), nullable=False, default=AutopayAmount.MINIMUM.value)
    last_autopay_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_credit(self) -> bool:
        return self.type == CardType.CREDIT.value

    @property
    def owes_balance(self) -> bool:
        """Credit semantics apply only when a credit limit is set."""
        return self.is_credit and self.credit_limit is not None

    @property
    def display_name(self) -> str:
        name = self.name or ("Credit Card" if self.is_credit else "Debit Card")
        return f"{name} ••{self.last_four}" if self.last_four else name

    def available_funds(self) -> Decimal:
        """Spendable amount: available credit for credit cards, balance + overdraft for debit."""
        balance = Decimal(self.balance or 0)
        if self.owes_balance:
            return Decimal(self.credit_limit or 0) - balance
        return balance + Decimal(self.overdraft_limit or 0)

    def utilization(self) -> float | None:
        """Owed balance as a percentage of the credit limit (credit cards only)."""
        if not self.owes_balance or not self.credit_limit:
            return None
        return float(Decimal(self.balance or 0) / Decimal(self.credit_limit) * 100)

    def autopay_due_amount(self) -> Decimal:
        """Amount an auto-payment should transfer today, capped at the owed balance."""
        owed = Decimal(self.balance or 0)
        if owed <= 0:
            return Decimal("0.00")
        if self.autopay_amount == AutopayAmount.STATEMENT_BALANCE.value:
            return owed
        if self.minimum_payment is not None:
            minimum = Decimal(self.minimum_payment)
        else:
            minimum = max(owed * MINIMUM_PAYMENT_RATE, MINIMUM_PAYMENT_FLOOR)
        return min(minimum, owed).quantize(Decimal("0.01"))
