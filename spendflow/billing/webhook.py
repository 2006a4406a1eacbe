"""
Billing webhook ingestion for SpendFlow.

Verifies Stripe-signed webhook payloads and mirrors subscription state into
local Subscription records, with a notification per user-visible event.

The user is resolved without calling back into the payment processor:
``metadata.user_id`` (or ``metadata.userId``) on the event object, the
checkout session's ``client_reference_id``, or an existing Subscription
matched by subscription or customer id.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from spendflow.infra.monitoring import record_webhook_event
from spendflow.lib.exceptions import ValidationError, WebhookSignatureError
from spendflow.lib.money import format_money, to_decimal
from spendflow.lib.security import hash_uid, verify_stripe_signature
from spendflow.models import NotificationType, Subscription, SubscriptionStatus
from spendflow.services.document_store import DocumentStore
from spendflow.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[bool]]


@dataclass
class WebhookResult:
    event_id: str
    event_type: str
    handled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "received": True,
            "event_id": self.event_id,
            "type": self.event_type,
            "handled": self.handled,
        }


def _timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _plan_id(subscription: dict[str, Any]) -> str | None:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return price.get("id")


def _metadata_user(obj: dict[str, Any]) -> str | None:
    metadata = obj.get("metadata") or {}
    return metadata.get("user_id") or metadata.get("userId")


class WebhookProcessor:
    """
    Verifies and dispatches billing webhook events.

    Usage:
        processor = WebhookProcessor(store, notifications, signing_secret)
        result = await processor.handle(raw_body, request.headers.get("Stripe-Signature"))
    """

    def __init__(
        self,
        store: DocumentStore,
        notifications: NotificationService,
        signing_secret: str,
        tolerance: int = 300,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.signing_secret = signing_secret
        self.tolerance = tolerance
        self._handlers: dict[str, EventHandler] = {
            "customer.subscription.created": self._subscription_created,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "customer.subscription.trial_will_end": self._trial_will_end,
            "checkout.session.completed": self._checkout_completed,
            "invoice.payment_succeeded": self._invoice_paid,
            "invoice.payment_failed": self._invoice_failed,
        }

    def parse(self, payload: bytes, signature: str | None, now: float | None = None) -> dict[str, Any]:
        """
        Verify the signature and decode the event.

        Raises:
            WebhookSignatureError: Signature missing, stale, or wrong
            ValidationError: Body is not a JSON event object
        """
        try:
            verify_stripe_signature(payload, signature, self.signing_secret, self.tolerance, now=now)
        except WebhookSignatureError:
            record_webhook_event("unknown", "rejected")
            raise
        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Webhook body is not valid JSON") from None
        if not isinstance(event, dict) or "type" not in event:
            raise ValidationError("Webhook body is not an event object")
        return event

    async def handle(
        self, payload: bytes, signature: str | None, now: float | None = None
    ) -> WebhookResult:
        event = self.parse(payload, signature, now=now)
        event_type = str(event["type"])
        obj = (event.get("data") or {}).get("object") or {}
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("webhook_event_ignored type=%s", event_type)
            record_webhook_event(event_type, "ignored")
            return WebhookResult(str(event.get("id", "")), event_type, handled=False)

        handled = await handler(obj)
        record_webhook_event(event_type, "handled" if handled else "unmatched")
        logger.info("webhook_event_processed type=%s handled=%s", event_type, handled)
        return WebhookResult(str(event.get("id", "")), event_type, handled=handled)

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    async def _find_subscription(
        self, subscription_id: str | None = None, customer_id: str | None = None
    ) -> Subscription | None:
        if subscription_id:
            found = await self.store.query(Subscription, stripe_subscription_id=subscription_id)
            if found:
                return found[0]
        if customer_id:
            found = await self.store.query(Subscription, stripe_customer_id=customer_id)
            if found:
                return found[0]
        return None

    async def _upsert_subscription(self, user_id: str, **values: Any) -> Subscription:
        existing = await self._find_subscription(
            values.get("stripe_subscription_id"), values.get("stripe_customer_id")
        )
        if existing is None:
            return await self.store.create(Subscription, user_id=user_id, **values)
        values = {key: value for key, value in values.items() if value is not None}
        return await self.store.update(Subscription, existing.id, **values)

    async def _resolve_user(self, obj: dict[str, Any]) -> str | None:
        user_id = _metadata_user(obj)
        if user_id:
            return user_id
        existing = await self._find_subscription(obj.get("id"), obj.get("customer"))
        return existing.user_id if existing else None

    # ------------------------------------------------------------------
    # Subscription events
    # ------------------------------------------------------------------

    async def _subscription_created(self, obj: dict[str, Any]) -> bool:
        user_id = await self._resolve_user(obj)
        if user_id is None:
            logger.warning("webhook_user_unresolved subscription_id=%s", obj.get("id"))
            return False
        plan_id = _plan_id(obj)
        await self._upsert_subscription(
            user_id,
            stripe_customer_id=obj.get("customer"),
            stripe_subscription_id=obj.get("id"),
            plan_id=plan_id,
            status=obj.get("status") or SubscriptionStatus.ACTIVE.value,
            current_period_end=_timestamp(obj.get("current_period_end")),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
        )
        await self.notifications.create(
            user_id,
            NotificationType.SUBSCRIPTION_CREATED,
            "Subscription Activated",
            "Your subscription has been activated.",
            {"plan_id": plan_id},
        )
        logger.info("subscription_created user_hash=%s", hash_uid(user_id))
        return True

    async def _subscription_updated(self, obj: dict[str, Any]) -> bool:
        existing = await self._find_subscription(obj.get("id"), obj.get("customer"))
        if existing is None:
            return False
        values: dict[str, Any] = {
            "status": obj.get("status") or existing.status,
            "current_period_end": _timestamp(obj.get("current_period_end")),
            "cancel_at_period_end": bool(obj.get("cancel_at_period_end")),
        }
        canceled_at = _timestamp(obj.get("canceled_at"))
        if canceled_at is not None:
            values["canceled_at"] = canceled_at
        plan_id = _plan_id(obj)
        if plan_id:
            values["plan_id"] = plan_id
        await self.store.update(Subscription, existing.id, **values)
        await self.notifications.create(
            existing.user_id,
            NotificationType.SUBSCRIPTION_UPDATED,
            "Subscription Updated",
            f"Your subscription is now {values['status']}.",
            {"status": values["status"], "cancel_at_period_end": values["cancel_at_period_end"]},
        )
        return True

    async def _subscription_deleted(self, obj: dict[str, Any]) -> bool:
        existing = await self._find_subscription(obj.get("id"), obj.get("customer"))
        if existing is None:
            return False
        await self.store.update(
            Subscription,
            existing.id,
            status=SubscriptionStatus.CANCELED.value,
            canceled_at=_timestamp(obj.get("canceled_at")) or datetime.now(UTC),
        )
        await self.notifications.create(
            existing.user_id,
            NotificationType.SUBSCRIPTION_CANCELED,
            "Subscription Canceled",
            "Your subscription has been canceled.",
            {"subscription_id": obj.get("id")},
        )
        return True

    async def _trial_will_end(self, obj: dict[str, Any]) -> bool:
        user_id = await self._resolve_user(obj)
        if user_id is None:
            return False
        trial_end = _timestamp(obj.get("trial_end"))
        when = trial_end.date().isoformat() if trial_end else "soon"
        await self.notifications.create(
            user_id,
            NotificationType.TRIAL_ENDING,
            "Trial Ending Soon",
            f"Your trial ends on {when}. Add a payment method to continue your subscription.",
            {"trial_end": trial_end.isoformat() if trial_end else None},
        )
        return True

    # ------------------------------------------------------------------
    # Checkout and invoices
    # ------------------------------------------------------------------

    async def _checkout_completed(self, obj: dict[str, Any]) -> bool:
        user_id = _metadata_user(obj) or obj.get("client_reference_id")
        if not user_id:
            logger.warning("webhook_user_unresolved checkout_session=%s", obj.get("id"))
            return False
        await self._upsert_subscription(
            user_id,
            stripe_customer_id=obj.get("customer"),
            stripe_subscription_id=obj.get("subscription"),
            status=SubscriptionStatus.ACTIVE.value,
        )
        return True

    async def _invoice_paid(self, obj: dict[str, Any]) -> bool:
        existing = await self._find_subscription(obj.get("subscription"), obj.get("customer"))
        if existing is None:
            return False
        # invoice amounts are in minor units
        amount = to_decimal(Decimal(int(obj.get("amount_paid") or obj.get("amount_due") or 0)) / 100)
        currency = str(obj.get("currency") or "gbp").upper()
        await self.notifications.create(
            existing.user_id,
            NotificationType.PAYMENT_SUCCESS,
            "Payment Successful",
            f"Your payment of {format_money(amount, currency)} was processed successfully.",
            {"invoice_id": obj.get("id"), "amount": str(amount), "currency": currency},
        )
        return True

    async def _invoice_failed(self, obj: dict[str, Any]) -> bool:
        existing = await self._find_subscription(obj.get("subscription"), obj.get("customer"))
        if existing is None:
            return False
        await self.store.update(Subscription, existing.id, status=SubscriptionStatus.PAST_DUE.value)
        await self.notifications.create(
            existing.user_id,
            NotificationType.PAYMENT_FAILED,
            "Payment Failed",
            "Your subscription payment failed. Please update your payment method.",
            {"invoice_id": obj.get("id")},
        )
        return True
