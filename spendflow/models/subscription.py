"""
Subscription Model for SpendFlow.

Mirror of the billing provider's subscription state, written only by the
webhook handlers.
"""

from __future__ import annotations

from enum import StrEnum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String

from spendflow.models.base import Base, new_id, utcnow


class SubscriptionStatus(StrEnum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    UNPAID = "unpaid"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    stripe_customer_id = Column(String(64), nullable=True, index=True)
    stripe_subscription_id = Column(String(64), nullable=True, unique=True)
    plan_id = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default=SubscriptionStatus.INCOMPLETE.value)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
