"""
Custom exception hierarchy for SpendFlow.

All exceptions inherit from SpendflowError, enabling a catch-all for
SpendFlow-specific errors while keeping the ability to catch specific
error types at the obligation-processing and API boundaries.
"""

from __future__ import annotations

from decimal import Decimal


class SpendflowError(Exception):
    """Base exception for all SpendFlow errors."""


class ConfigurationError(SpendflowError):
    """Missing environment variables, invalid config values, or startup failures."""


class StoreError(SpendflowError):
    """Document store failures (connection, query, constraint)."""


class TransientStoreError(StoreError):
    """Store temporarily unavailable (network blip, lock timeout)."""


class QuotaExceededError(StoreError):
    """Store refused the operation because a quota or rate limit was hit."""


class NotFoundError(SpendflowError):
    """A referenced entity does not exist or is not owned by the caller."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} '{entity_id}' not found")


class InsufficientFundsError(SpendflowError):
    """Funding card cannot cover the required amount."""

    def __init__(self, card_id: str, required: Decimal, available: Decimal) -> None:
        self.card_id = card_id
        self.required = required
        self.available = available
        super().__init__(
            f"Card '{card_id}' has {available} available, {required} required"
        )

    @property
    def shortfall(self) -> Decimal:
        """Amount missing to cover the payment."""
        return self.required - self.available


class ValidationError(SpendflowError):
    """Input validation, parsing, or type conversion failures."""


class WebhookSignatureError(SpendflowError):
    """Webhook payload signature missing, malformed, stale, or wrong."""


class CircuitOpenError(SpendflowError):
    """A guarded write was rejected because its circuit is open."""
