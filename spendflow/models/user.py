"""
User Model for SpendFlow.

The id is the identity issued by the authentication provider; SpendFlow
never creates identities of its own.
"""

from sqlalchemy import Column, DateTime, String

from spendflow.models.base import Base, utcnow


class User(Base):
    """
    Account owner.

    Attributes:
        id: Identity from the auth provider
        email: Contact address (never logged)
        currency: ISO-4217 code used for notification text
        last_active_at: Last activity timestamp (non-essential write)
    """

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(320), nullable=True)
    currency = Column(String(3), nullable=False, default="GBP")
    last_active_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
