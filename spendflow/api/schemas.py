"""
Pydantic Schemas for the SpendFlow REST API.

Request schemas validate input; responses are plain dicts wrapped in the
standard envelope:

    {"success": true,  "data": {...}, "error": null}
    {"success": false, "data": null,  "error": {"code": "...", "message": "..."}}
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from spendflow.lib.errors import build_error_response
from spendflow.models import Frequency

# =============================================================================
# Envelope
# =============================================================================


def success_response(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data, "error": None}


def error_response(
    code: str, message: str | None = None, details: dict[str, Any] | None = None
) -> dict[str, Any]:
    return {"success": False, "data": None, "error": build_error_response(code, message, details)}


def serialize(record: Any) -> dict[str, Any]:
    """JSON-safe dict of a model: Decimal -> str, dates -> ISO-8601."""
    result: dict[str, Any] = {}
    for key, value in record.to_dict().items():
        if isinstance(value, Decimal):
            value = str(value)
        elif hasattr(value, "isoformat"):
            value = value.isoformat()
        result[key] = value
    return result


# =============================================================================
# Recurring Expense Schemas
# =============================================================================


class RecurringExpenseCreate(BaseModel):
    """Request schema for creating a recurring expense."""

    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    card_id: str = Field(..., min_length=1, max_length=32)
    day_of_month: int = Field(..., ge=1, le=31)
    category: str = Field(default="Other", max_length=100)
    frequency: Frequency = Frequency.MONTHLY
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode="after")
    def _check_window(self) -> RecurringExpenseCreate:
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class RecurringExpenseUpdate(BaseModel):
    """Request schema for a partial update. Omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1, max_length=200)
    amount: Decimal | None = Field(None, gt=0, max_digits=14, decimal_places=2)
    card_id: str | None = Field(None, min_length=1, max_length=32)
    day_of_month: int | None = Field(None, ge=1, le=31)
    category: str | None = Field(None, max_length=100)
    frequency: Frequency | None = None
    is_active: bool | None = None
    start_date: date | None = None
    end_date: date | None = None

    @field_validator("name", "category")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        return value.strip() if value is not None else None

    def changes(self) -> dict[str, Any]:
        values = self.model_dump(exclude_unset=True, exclude_none=True)
        if "frequency" in values:
            values["frequency"] = values["frequency"].value
        return values
