"""
Centralized Error Response Builder for SpendFlow.

Provides consistent error codes and messages for the API response envelope
and maps domain exceptions onto them.
"""

from __future__ import annotations

from typing import Any

from spendflow.lib.exceptions import (
    InsufficientFundsError,
    NotFoundError,
    QuotaExceededError,
    SpendflowError,
    ValidationError,
    WebhookSignatureError,
)

# =============================================================================
# Error Code Constants
# =============================================================================

AUTH_REQUIRED = "AUTH_REQUIRED"
NOT_FOUND = "NOT_FOUND"
VALIDATION_ERROR = "VALIDATION_ERROR"
INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
INVALID_SIGNATURE = "INVALID_SIGNATURE"
QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
INTERNAL_ERROR = "INTERNAL_ERROR"

_ERROR_MESSAGES: dict[str, str] = {
    AUTH_REQUIRED: "Authentication is required.",
    NOT_FOUND: "The requested resource was not found.",
    VALIDATION_ERROR: "Invalid input. Please check your request.",
    INSUFFICIENT_FUNDS: "The selected card does not have enough funds.",
    INVALID_SIGNATURE: "Webhook signature verification failed.",
    QUOTA_EXCEEDED: "The service is temporarily over quota. Please try again later.",
    INTERNAL_ERROR: "An internal error occurred. Please try again.",
}

# HTTP status per error code
HTTP_STATUS: dict[str, int] = {
    AUTH_REQUIRED: 401,
    NOT_FOUND: 404,
    VALIDATION_ERROR: 422,
    INSUFFICIENT_FUNDS: 409,
    INVALID_SIGNATURE: 400,
    QUOTA_EXCEEDED: 503,
    INTERNAL_ERROR: 500,
}


def get_error_message(code: str) -> str:
    """Return the default message for an error code."""
    return _ERROR_MESSAGES.get(code, "An error occurred.")


def build_error_response(
    code: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build a structured error dict: {"code": str, "message": str, "details"?: dict}.

    If no message is provided, the default message for the code is used.
    """
    error: dict[str, Any] = {
        "code": code,
        "message": message if message is not None else get_error_message(code),
    }
    if details is not None:
        error["details"] = details
    return error


def error_code_for(exc: SpendflowError) -> str:
    """Map a domain exception to its API error code."""
    if isinstance(exc, NotFoundError):
        return NOT_FOUND
    if isinstance(exc, ValidationError):
        return VALIDATION_ERROR
    if isinstance(exc, InsufficientFundsError):
        return INSUFFICIENT_FUNDS
    if isinstance(exc, WebhookSignatureError):
        return INVALID_SIGNATURE
    if isinstance(exc, QuotaExceededError):
        return QUOTA_EXCEEDED
    return INTERNAL_ERROR


__all__ = [
    "AUTH_REQUIRED",
    "NOT_FOUND",
    "VALIDATION_ERROR",
    "INSUFFICIENT_FUNDS",
    "INVALID_SIGNATURE",
    "QUOTA_EXCEEDED",
    "INTERNAL_ERROR",
    "HTTP_STATUS",
    "get_error_message",
    "build_error_response",
    "error_code_for",
]
