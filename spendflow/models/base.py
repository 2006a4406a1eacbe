"""
SQLAlchemy Base for SpendFlow.

Usage:
    from spendflow.models.base import Base

    class MyModel(Base):
        __tablename__ = "my_table"
        ...
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import DeclarativeBase


def new_id() -> str:
    """Opaque record identifier."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base shared by every SpendFlow table."""

    def to_dict(self) -> dict[str, Any]:
        """Column values keyed by attribute name."""
        return {column.key: getattr(self, column.key) for column in self.__mapper__.column_attrs}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={getattr(self, 'id', None)!r}>"


__all__ = ["Base", "new_id", "utcnow"]
