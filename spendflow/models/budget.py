"""
Budget Model for SpendFlow.

Only the inputs are stored; percentage, status, remaining, and days left are
derived on read (see spendflow.services.budgets.compute_budget_status).
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String

from spendflow.models.base import Base, new_id, utcnow


class BudgetPeriod(StrEnum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Budget(Base):
    """
    Spending budget for one category.

    Attributes:
        amount: Budgeted amount for one period
        spent: Amount spent in the current period
        period: weekly | monthly | yearly
        alert_threshold: Percentage at which a budget alert is sent
        last_alert_period: Start of the period the last alert was sent for
    """

    __tablename__ = "budgets"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    spent = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    period = Column(String(10), nullable=False, default=BudgetPeriod.MONTHLY.value)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    alert_threshold = Column(Integer, nullable=False, default=80)
    last_alert_period = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
