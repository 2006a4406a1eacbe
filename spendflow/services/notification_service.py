"""
Notification Service for SpendFlow.

Creates notification records for payment outcomes, funding warnings, budget
alerts, and billing events, and serves them back to the owner.

Amounts in ``data`` are stored as strings so the JSON column round-trips
Decimal values exactly.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import desc

from spendflow.lib.exceptions import NotFoundError
from spendflow.lib.money import format_money
from spendflow.lib.security import hash_uid
from spendflow.models import Budget, Card, Notification, NotificationType
from spendflow.services.document_store import DocumentStore, StoreTransaction

logger = logging.getLogger(__name__)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class NotificationService:
    """Writes and reads user notifications."""

    def __init__(self, store: DocumentStore, currency: str = "GBP") -> None:
        self.store = store
        self.currency = currency

    async def create(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        tx: StoreTransaction | None = None,
    ) -> Notification:
        """
        Create an unread notification.

        Args:
            tx: Open transaction to write in; a new one is used when omitted
        """
        values = {
            "user_id": user_id,
            "type": type.value,
            "title": title,
            "message": message,
            "data": data or {},
            "read": False,
        }
        if tx is not None:
            notification = await tx.create(Notification, **values)
        else:
            notification = await self.store.create(Notification, **values)
        logger.info(
            "notification_created user_hash=%s type=%s", hash_uid(user_id), type.value
        )
        return notification

    # ------------------------------------------------------------------
    # Obligation outcomes
    # ------------------------------------------------------------------

    async def notify_failed_payment(
        self,
        user_id: str,
        name: str,
        amount: Decimal,
        error: str,
        kind: str = "recurring_expense",
        currency: str | None = None,
    ) -> Notification:
        money = format_money(amount, currency or self.currency)
        return await self.create(
            user_id,
            NotificationType.PAYMENT_FAILED,
            "Payment Failed",
            f"{name} payment of {money} could not be processed. {error}",
            {"name": name, "amount": str(amount), "error": error, "kind": kind},
        )

    async def notify_insufficient_funds(
        self,
        user_id: str,
        card: Card,
        required: Decimal,
        available: Decimal,
        days_until: int,
        name: str | None = None,
        currency: str | None = None,
        obligation_id: str | None = None,
        as_of: date | None = None,
    ) -> Notification:
        """Warn that ``card`` cannot cover ``required`` due in ``days_until`` days."""
        currency = currency or self.currency
        when = "today" if days_until <= 0 else f"in {_plural(days_until, 'day')}"
        subject = name or "expenses"
        return await self.create(
            user_id,
            NotificationType.INSUFFICIENT_FUNDS_WARNING,
            "Insufficient Funds Warning",
            (
                f"You have {format_money(required, currency)} in {subject} due {when} "
                f"on {card.display_name}, but only {format_money(available, currency)} available."
            ),
            {
                "card_id": card.id,
                "name": name,
                "required": str(required),
                "available": str(available),
                "shortfall": str(required - available),
                "days_until": max(0, days_until),
                "obligation_id": obligation_id,
                "as_of": as_of.isoformat() if as_of else None,
            },
        )

    async def notify_low_balance(
        self,
        user_id: str,
        card: Card,
        available: Decimal,
        threshold: Decimal,
        currency: str | None = None,
        as_of: date | None = None,
    ) -> Notification:
        money = format_money(available, currency or self.currency)
        return await self.create(
            user_id,
            NotificationType.LOW_BALANCE,
            "Low Balance Alert",
            (
                f"Your available funds on {card.display_name} are low ({money}). "
                "Consider adding funds or reducing expenses."
            ),
            {
                "card_id": card.id,
                "available": str(available),
                "threshold": str(threshold),
                "as_of": as_of.isoformat() if as_of else None,
            },
        )

    async def notify_payment_success(
        self,
        user_id: str,
        credit_card: Card,
        amount: Decimal,
        currency: str | None = None,
        tx: StoreTransaction | None = None,
    ) -> Notification:
        money = format_money(amount, currency or self.currency)
        return await self.create(
            user_id,
            NotificationType.PAYMENT_SUCCESS,
            "Payment Successful",
            f"Automatic payment of {money} to {credit_card.display_name} was completed.",
            {"card_id": credit_card.id, "amount": str(amount)},
            tx=tx,
        )

    async def notify_budget_alert(
        self,
        user_id: str,
        budget: Budget,
        percentage: float,
        currency: str | None = None,
    ) -> Notification:
        currency = currency or self.currency
        spent = format_money(budget.spent, currency)
        total = format_money(budget.amount, currency)
        return await self.create(
            user_id,
            NotificationType.BUDGET_ALERT,
            "Budget Alert",
            f"You have used {percentage:.0f}% of your {budget.name} budget ({spent} of {total}).",
            {
                "budget_id": budget.id,
                "percentage": round(percentage, 2),
                "spent": str(budget.spent),
                "amount": str(budget.amount),
            },
        )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def list_for_user(
        self, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        """Newest first."""
        filters: dict[str, Any] = {"user_id": user_id}
        if unread_only:
            filters["read"] = False
        return await self.store.query(
            Notification, order_by=desc(Notification.created_at), limit=limit, **filters
        )

    async def exists(
        self,
        user_id: str,
        type: NotificationType,
        since: date | None = None,
        **match: Any,
    ) -> bool:
        """
        True if the user has a notification of ``type`` whose data matches every pair.

        Args:
            since: Only look at notifications created on or after this day
        """
        conditions = []
        if since is not None:
            # a day of slack: ``since`` is a local date, created_at is UTC
            cutoff = datetime.combine(since - timedelta(days=1), time.min, tzinfo=UTC)
            conditions.append(Notification.created_at >= cutoff)
        candidates = await self.store.query(
            Notification, *conditions, user_id=user_id, type=type.value
        )
        for notification in candidates:
            data = notification.data or {}
            if all(data.get(key) == value for key, value in match.items()):
                return True
        return False

    async def mark_read(self, user_id: str, notification_id: str) -> Notification:
        """Raises NotFoundError if the notification is missing or not owned."""
        notification = await self.store.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError("Notification", notification_id)
        return await self.store.update(Notification, notification_id, read=True)
