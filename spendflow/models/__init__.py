"""
Models package for SpendFlow.

This package exports all SQLAlchemy models.

Usage:
    from spendflow.models import User, Card, RecurringExpense, Transaction
    from spendflow.models import Budget, Notification, Subscription
"""

from spendflow.models.base import Base
from spendflow.models.budget import Budget, BudgetPeriod
from spendflow.models.card import AutopayAmount, Card, CardType
from spendflow.models.notification import Notification, NotificationType
from spendflow.models.payment import (
    CreditCardPayment,
    ObligationError,
    ObligationKind,
    PaymentStatus,
)
from spendflow.models.recurring_expense import Frequency, RecurringExpense
from spendflow.models.subscription import Subscription, SubscriptionStatus
from spendflow.models.transaction import Transaction, TransactionType
from spendflow.models.user import User

__all__ = [
    # Base
    "Base",
    # Core Models
    "User",
    "Card",
    "RecurringExpense",
    "Transaction",
    "Budget",
    "Notification",
    "CreditCardPayment",
    "ObligationError",
    "Subscription",
    # Enums
    "AutopayAmount",
    "BudgetPeriod",
    "CardType",
    "Frequency",
    "NotificationType",
    "ObligationKind",
    "PaymentStatus",
    "SubscriptionStatus",
    "TransactionType",
]
