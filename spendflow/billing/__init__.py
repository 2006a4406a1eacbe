"""Billing: payment-processor webhook ingestion."""

from spendflow.billing.webhook import WebhookProcessor, WebhookResult

__all__ = ["WebhookProcessor", "WebhookResult"]
