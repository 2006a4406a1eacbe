"""
Transaction Model for SpendFlow.

Transactions are append-only: corrections are new rows, never edits.
"""

from __future__ import annotations

from enum import StrEnum

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Numeric, String, Text

from spendflow.models.base import Base, new_id, utcnow


class TransactionType(StrEnum):
    EXPENSE = "expense"
    INCOME = "income"
    REFUND = "refund"
    TRANSFER = "transfer"


class Transaction(Base):
    """
    Money movement on a card.

    Attributes:
        amount: Positive amount in currency units
        type: expense | income | refund | transfer
        is_recurring: Created by the obligation processor
        recurring_expense_id: Source recurring expense, if any
    """

    __tablename__ = "transactions"
    __table_args__ = (Index("ix_transactions_user_card_date", "user_id", "card_id", "date"),)

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    card_id = Column(String(32), ForeignKey("cards.id"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    type = Column(String(10), nullable=False)
    category = Column(String(100), nullable=False, default="Other")
    description = Column(Text, nullable=True)
    date = Column(Date, nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_expense_id = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
