"""
RecurringExpense Model for SpendFlow.

A recurring expense charges a card on a day of the month. ``last_processed``
is the idempotency marker: it is written only by the obligation processor,
inside the same database transaction as the charge.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String

from spendflow.lib.dates import is_trigger_day, same_month
from spendflow.models.base import Base, new_id, utcnow


class Frequency(StrEnum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    YEARLY = "yearly"


# Multipliers that normalize an amount to a monthly figure
MONTHLY_FACTOR: dict[str, Decimal] = {
    Frequency.MONTHLY.value: Decimal(1),
    Frequency.WEEKLY.value: Decimal(52) / Decimal(12),
    Frequency.YEARLY.value: Decimal(1) / Decimal(12),
}


class RecurringExpense(Base):
    """
    Recurring expense charged to a card.

    Attributes:
        amount: Positive amount in currency units
        category: Free-text category, matched against budgets
        frequency: monthly | weekly | yearly
        day_of_month: 1-31, clamped to the last day of short months
        start_date / end_date: Active window (end_date inclusive, optional)
        last_processed: Date of the last successful charge
    """

    __tablename__ = "recurring_expenses"
    __table_args__ = (Index("ix_recurring_expenses_user_active", "user_id", "is_active"),)

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    category = Column(String(100), nullable=False, default="Other")
    card_id = Column(String(32), nullable=False)
    frequency = Column(String(10), nullable=False, default=Frequency.MONTHLY.value)
    day_of_month = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(Date, nullable=False, default=date.today)
    end_date = Column(Date, nullable=True)
    last_processed = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def in_window(self, today: date) -> bool:
        """True if ``today`` falls inside start_date..end_date."""
        if self.start_date is not None and today < self.start_date:
            return False
        return self.end_date is None or today <= self.end_date

    def fires_in_month(self, year: int, month: int) -> bool:
        """Yearly expenses fire only in the month of their start date."""
        if self.frequency == Frequency.YEARLY.value and self.start_date is not None:
            return self.start_date.month == month
        return True

    def is_due(self, today: date) -> bool:
        """
        Due-detection for a single day.

        Due iff active, inside its window, the trigger day matches today
        (clamped for short months), and not yet processed this month.
        """
        if not self.is_active or not self.in_window(today):
            return False
        if not self.fires_in_month(today.year, today.month):
            return False
        if not is_trigger_day(self.day_of_month, today):
            return False
        return not same_month(self.last_processed, today)

    def monthly_amount(self) -> Decimal:
        """Amount normalized to one month."""
        factor = MONTHLY_FACTOR.get(self.frequency, Decimal(1))
        return Decimal(self.amount) * factor
