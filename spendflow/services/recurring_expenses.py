"""
Recurring Expense Service for SpendFlow.

CRUD for recurring expenses plus the read-side views built on them:
upcoming charges, frequency-normalized monthly totals, totals by category,
and a preview of what the processor would charge today.

``last_processed`` is never writable here; only the obligation processor
stamps it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from spendflow.lib.dates import add_months, same_month, trigger_date
from spendflow.lib.exceptions import ValidationError
from spendflow.lib.money import ZERO, to_decimal
from spendflow.lib.security import hash_uid
from spendflow.models import Card, Frequency, RecurringExpense
from spendflow.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

# Fields a caller may change through update()
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "amount",
        "category",
        "card_id",
        "frequency",
        "day_of_month",
        "is_active",
        "start_date",
        "end_date",
    }
)

# Upper bound on months scanned when looking for the next occurrence
_MAX_SCAN_MONTHS = 24


@dataclass
class UpcomingCharge:
    """A recurring expense with its next charge date."""

    expense: RecurringExpense
    due_date: date
    days_until: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.expense.id,
            "name": self.expense.name,
            "amount": str(self.expense.amount),
            "category": self.expense.category,
            "card_id": self.expense.card_id,
            "due_date": self.due_date.isoformat(),
            "days_until": self.days_until,
        }


def next_occurrence(expense: RecurringExpense, today: date) -> date | None:
    """
    Next date (today included) on which ``expense`` will be charged.

    Skips the current month if it was already processed, respects the
    start/end window and the yearly month. Returns None for inactive or
    ended expenses.
    """
    if not expense.is_active:
        return None
    month_cursor = today.replace(day=1)
    for _ in range(_MAX_SCAN_MONTHS):
        candidate = trigger_date(expense.day_of_month, month_cursor)
        month_cursor = add_months(month_cursor, 1)
        if candidate < today:
            continue
        if same_month(expense.last_processed, candidate):
            continue
        if not expense.fires_in_month(candidate.year, candidate.month):
            continue
        if expense.start_date is not None and candidate < expense.start_date:
            continue
        if expense.end_date is not None and candidate > expense.end_date:
            return None
        return candidate
    return None


def _validate_values(values: dict[str, Any]) -> dict[str, Any]:
    """Normalize and validate user-supplied fields in place."""
    if "amount" in values:
        values["amount"] = to_decimal(values["amount"])
        if values["amount"] <= 0:
            raise ValidationError("amount must be greater than zero")
    if "day_of_month" in values:
        day = values["day_of_month"]
        if not isinstance(day, int) or not 1 <= day <= 31:
            raise ValidationError("day_of_month must be between 1 and 31")
    if "frequency" in values:
        try:
            values["frequency"] = Frequency(values["frequency"]).value
        except ValueError:
            raise ValidationError(f"Unknown frequency: {values['frequency']!r}") from None
    if "name" in values and not str(values["name"]).strip():
        raise ValidationError("name must not be empty")
    start, end = values.get("start_date"), values.get("end_date")
    if start is not None and end is not None and end < start:
        raise ValidationError("end_date must not be before start_date")
    return values


class RecurringExpenseService:
    """User-facing operations on recurring expenses."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def _require_card(self, user_id: str, card_id: str) -> Card:
        return await self.store.get_owned(Card, card_id, user_id)

    async def create(
        self,
        user_id: str,
        name: str,
        amount: Decimal | str | float,
        card_id: str,
        day_of_month: int,
        category: str = "Other",
        frequency: str = Frequency.MONTHLY.value,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> RecurringExpense:
        """
        Create an active recurring expense.

        Raises:
            ValidationError: Bad amount, day, frequency, or date window
            NotFoundError: card_id does not belong to the user
        """
        values = _validate_values(
            {
                "name": name,
                "amount": amount,
                "day_of_month": day_of_month,
                "frequency": frequency,
                "start_date": start_date or date.today(),
                "end_date": end_date,
            }
        )
        await self._require_card(user_id, card_id)
        expense = await self.store.create(
            RecurringExpense,
            user_id=user_id,
            card_id=card_id,
            category=category or "Other",
            is_active=True,
            **values,
        )
        logger.info(
            "recurring_expense_created user_hash=%s expense_id=%s", hash_uid(user_id), expense.id
        )
        return expense

    async def get(self, user_id: str, expense_id: str) -> RecurringExpense:
        return await self.store.get_owned(RecurringExpense, expense_id, user_id)

    async def list_for_user(
        self, user_id: str, include_inactive: bool = False
    ) -> list[RecurringExpense]:
        """Expenses ordered by day of month."""
        filters: dict[str, Any] = {"user_id": user_id}
        if not include_inactive:
            filters["is_active"] = True
        return await self.store.query(
            RecurringExpense, order_by=RecurringExpense.day_of_month, **filters
        )

    async def update(self, user_id: str, expense_id: str, **changes: Any) -> RecurringExpense:
        """
        Partial update of user-editable fields.

        Raises:
            ValidationError: Unknown or non-editable field, or invalid value
            NotFoundError: Expense (or new card) not owned by the user
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        expense = await self.get(user_id, expense_id)
        values = _validate_values(dict(changes))
        start = values.get("start_date", expense.start_date)
        end = values.get("end_date", expense.end_date)
        if start is not None and end is not None and end < start:
            raise ValidationError("end_date must not be before start_date")
        if "card_id" in values:
            await self._require_card(user_id, values["card_id"])
        return await self.store.update(RecurringExpense, expense_id, **values)

    async def delete(self, user_id: str, expense_id: str, hard: bool = False) -> None:
        """Soft delete (deactivate) by default; ``hard=True`` removes the record."""
        await self.get(user_id, expense_id)
        if hard:
            await self.store.delete(RecurringExpense, expense_id)
        else:
            await self.store.update(RecurringExpense, expense_id, is_active=False)
        logger.info(
            "recurring_expense_deleted user_hash=%s expense_id=%s hard=%s",
            hash_uid(user_id),
            expense_id,
            hard,
        )

    async def upcoming(self, user_id: str, today: date, days: int = 7) -> list[UpcomingCharge]:
        """Charges due within ``days`` days of ``today`` (today included), soonest first."""
        if days < 0:
            raise ValidationError("days must not be negative")
        charges = []
        for expense in await self.list_for_user(user_id):
            due = next_occurrence(expense, today)
            if due is None:
                continue
            days_until = (due - today).days
            if days_until <= days:
                charges.append(UpcomingCharge(expense, due, days_until))
        charges.sort(key=lambda charge: (charge.due_date, charge.expense.name))
        return charges

    async def monthly_total(self, user_id: str) -> Decimal:
        """Sum of active expenses normalized to one month."""
        total = sum(
            (expense.monthly_amount() for expense in await self.list_for_user(user_id)), ZERO
        )
        return to_decimal(total)

    async def totals_by_category(self, user_id: str) -> dict[str, Decimal]:
        """Monthly-normalized totals keyed by category."""
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for expense in await self.list_for_user(user_id):
            totals[expense.category] += expense.monthly_amount()
        return {category: to_decimal(amount) for category, amount in sorted(totals.items())}

    async def preview(self, user_id: str, today: date) -> list[RecurringExpense]:
        """Expenses the processor would charge on ``today``."""
        return [expense for expense in await self.list_for_user(user_id) if expense.is_due(today)]

