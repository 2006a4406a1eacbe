"""
Notification Model for SpendFlow.

Notifications are records only; delivery (push, e-mail) happens elsewhere.
"""

from __future__ import annotations

from enum import StrEnum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, String, Text

from spendflow.models.base import Base, new_id, utcnow


class NotificationType(StrEnum):
    PAYMENT_FAILED = "payment_failed"
    INSUFFICIENT_FUNDS_WARNING = "insufficient_funds_warning"
    PAYMENT_SUCCESS = "payment_success"
    LOW_BALANCE = "low_balance"
    BUDGET_ALERT = "budget_alert"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    TRIAL_ENDING = "trial_ending"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_read", "user_id", "read"),)

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(40), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
