"""
Budget Service for SpendFlow.

compute_budget_status is a pure function: the status of a budget is always
derived from amount / spent / period, never stored.

BudgetService adds the record-level operations: status of stored budgets,
recalculating ``spent`` from transactions, and one budget alert per period
when the alert threshold is crossed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any

from spendflow.lib.dates import period_end as current_period_end
from spendflow.lib.dates import period_start
from spendflow.lib.money import ZERO, to_decimal
from spendflow.lib.security import hash_uid
from spendflow.models import Budget, Transaction, TransactionType
from spendflow.services.document_store import DocumentStore
from spendflow.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Upper bounds (exclusive) of each status bucket, in percent
WARNING_AT = 70.0
DANGER_AT = 90.0
EXCEEDED_AT = 100.0


class BudgetHealth(StrEnum):
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class BudgetStatus:
    """Derived view of a budget on a given day."""

    percentage: float
    status: BudgetHealth
    remaining: Decimal
    days_left: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "percentage": round(self.percentage, 2),
            "status": self.status.value,
            "remaining": str(self.remaining),
            "days_left": self.days_left,
        }


def status_for(percentage: float) -> BudgetHealth:
    if percentage < WARNING_AT:
        return BudgetHealth.SAFE
    if percentage < DANGER_AT:
        return BudgetHealth.WARNING
    if percentage < EXCEEDED_AT:
        return BudgetHealth.DANGER
    return BudgetHealth.EXCEEDED


def compute_budget_status(
    amount: Decimal | int | float | str,
    spent: Decimal | int | float | str,
    period_end: date,
    today: date,
) -> BudgetStatus:
    """
    Derive percentage, status, remaining, and days left for a budget.

    A zero budget is 0% while nothing is spent and exceeded (100%) as soon as
    anything is. ``remaining`` goes negative on overage.

    Examples:
        >>> compute_budget_status(100, 120, date(2024, 5, 31), date(2024, 5, 20)).remaining
        Decimal('-20.00')
    """
    amount = to_decimal(amount)
    spent = to_decimal(spent)
    if amount == 0:
        percentage = 0.0 if spent == 0 else 100.0
    else:
        percentage = float(spent / amount * 100)
    return BudgetStatus(
        percentage=percentage,
        status=status_for(percentage),
        remaining=amount - spent,
        days_left=max(0, (period_end - today).days),
    )


def budget_period_end(budget: Budget, today: date) -> date:
    """Explicit end_date if set, otherwise the end of the current period."""
    return budget.end_date or current_period_end(budget.period, today)


class BudgetService:
    def __init__(self, store: DocumentStore, notifications: NotificationService) -> None:
        self.store = store
        self.notifications = notifications

    async def list_for_user(self, user_id: str) -> list[Budget]:
        return await self.store.query(Budget, order_by=Budget.name, user_id=user_id, is_active=True)

    async def get(self, user_id: str, budget_id: str) -> Budget:
        return await self.store.get_owned(Budget, budget_id, user_id)

    async def status(self, user_id: str, budget_id: str, today: date) -> BudgetStatus:
        budget = await self.get(user_id, budget_id)
        return compute_budget_status(
            budget.amount, budget.spent, budget_period_end(budget, today), today
        )

    async def spent_in_period(self, budget: Budget, today: date) -> Decimal:
        """Expenses minus refunds in the budget's category for the current period."""
        start = period_start(budget.period, today)
        end = budget_period_end(budget, today)
        transactions = await self.store.query(
            Transaction,
            Transaction.date >= start,
            Transaction.date <= end,
            user_id=budget.user_id,
            category=budget.category,
        )
        total = ZERO
        for txn in transactions:
            if txn.type == TransactionType.EXPENSE.value:
                total += Decimal(txn.amount)
            elif txn.type == TransactionType.REFUND.value:
                total -= Decimal(txn.amount)
        return to_decimal(max(total, ZERO))

    async def recalculate(self, user_id: str, budget_id: str, today: date) -> BudgetStatus:
        """
        Recompute ``spent`` from transactions and alert once per period.

        The alert fires the first time the percentage reaches the budget's
        alert_threshold within a period.
        """
        budget = await self.get(user_id, budget_id)
        spent = await self.spent_in_period(budget, today)
        budget = await self.store.update(Budget, budget.id, spent=spent)
        result = compute_budget_status(budget.amount, spent, budget_period_end(budget, today), today)

        current_period = period_start(budget.period, today)
        if (
            result.percentage >= float(budget.alert_threshold)
            and budget.last_alert_period != current_period
        ):
            await self.notifications.notify_budget_alert(user_id, budget, result.percentage)
            await self.store.update(Budget, budget.id, last_alert_period=current_period)
            logger.info(
                "budget_alert_sent user_hash=%s budget_id=%s percentage=%.1f",
                hash_uid(user_id),
                budget.id,
                result.percentage,
            )
        return result

