"""Webhook verification, dispatch and subscription state projection."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from .catalog import PriceCatalog
from .exceptions import WebhookHandlerError
from .models import ProjectionOutcome, SubscriptionRecord, SubscriptionTier, WebhookEventType
from .service import ACCOUNT_METADATA_KEY, BillingRepository, PaymentGateway

logger = logging.getLogger("billing.webhooks")

CANCELED_STATUS = "canceled"
PAST_DUE_STATUS = "past_due"

EventHandler = Callable[[Mapping[str, Any], Optional[datetime]], None]


@dataclass(slots=True)
class SubscriptionProjector:
    """Mirrors provider subscription state into local storage.

    Every write carries the timestamp of the provider event that caused it.
    A write older than the one already stored is dropped, so out-of-order
    deliveries cannot regress the account's tier. Redelivering the same event
    applies it again with an identical result.
    """

    repository: BillingRepository
    catalog: PriceCatalog

    def project(
        self,
        subscription: Mapping[str, Any],
        *,
        event_at: Optional[datetime] = None,
    ) -> ProjectionOutcome:
        account_id = _account_id(subscription)
        if not account_id:
            logger.info("Subscription %s has no account metadata; skipping", subscription.get("id"))
            return ProjectionOutcome.SKIPPED

        subscription_id = str(subscription["id"])
        if self._is_stale(subscription_id, event_at):
            return ProjectionOutcome.STALE

        tier = self.catalog.tier_for_price(_price_id(subscription))
        record = SubscriptionRecord(
            external_subscription_id=subscription_id,
            account_id=account_id,
            tier=tier,
            status=str(subscription.get("status") or "incomplete"),
            current_period_start=_period_bound(subscription, "current_period_start"),
            current_period_end=_period_bound(subscription, "current_period_end"),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            last_event_at=event_at,
        )
        saved = self.repository.save_subscription_projection(
            record,
            account_tier=tier,
            external_customer_id=_object_id(subscription.get("customer")),
        )
        if saved is None:
            logger.info("Stored subscription %s is newer than event; skipping", subscription_id)
            return ProjectionOutcome.STALE

        logger.info(
            "Subscription %s projected account=%s tier=%s status=%s",
            subscription_id,
            account_id,
            tier.value,
            record.status,
        )
        return ProjectionOutcome.APPLIED

    def cancel(
        self,
        subscription: Mapping[str, Any],
        *,
        event_at: Optional[datetime] = None,
    ) -> ProjectionOutcome:
        account_id = _account_id(subscription)
        if not account_id:
            logger.info("Deleted subscription %s has no account metadata; skipping", subscription.get("id"))
            return ProjectionOutcome.SKIPPED

        subscription_id = str(subscription["id"])
        if self._is_stale(subscription_id, event_at):
            return ProjectionOutcome.STALE

        existing = self.repository.get_subscription(subscription_id)
        if existing is not None:
            record = existing.model_copy(
                update={
                    "status": CANCELED_STATUS,
                    "cancel_at_period_end": True,
                    "last_event_at": event_at or existing.last_event_at,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
        else:
            record = SubscriptionRecord(
                external_subscription_id=subscription_id,
                account_id=account_id,
                tier=SubscriptionTier.FREE,
                status=CANCELED_STATUS,
                current_period_start=_period_bound(subscription, "current_period_start"),
                current_period_end=_period_bound(subscription, "current_period_end"),
                cancel_at_period_end=True,
                last_event_at=event_at,
            )

        saved = self.repository.save_subscription_projection(
            record,
            account_tier=SubscriptionTier.FREE,
            external_customer_id=_object_id(subscription.get("customer")),
        )
        if saved is None:
            return ProjectionOutcome.STALE

        logger.info("Subscription %s canceled; account %s downgraded to FREE", subscription_id, account_id)
        return ProjectionOutcome.APPLIED

    def mark_past_due(
        self,
        subscription_id: str,
        *,
        event_at: Optional[datetime] = None,
    ) -> ProjectionOutcome:
        if self._is_stale(subscription_id, event_at):
            return ProjectionOutcome.STALE

        updated = self.repository.update_subscription_status(
            subscription_id,
            status=PAST_DUE_STATUS,
            event_at=event_at,
        )
        if updated is None:
            logger.info("No local subscription %s to mark past due", subscription_id)
            return ProjectionOutcome.SKIPPED

        logger.warning("Payment failed for subscription %s account=%s", subscription_id, updated.account_id)
        return ProjectionOutcome.APPLIED

    def _is_stale(self, subscription_id: str, event_at: Optional[datetime]) -> bool:
        if event_at is None:
            return False
        existing = self.repository.get_subscription(subscription_id)
        if existing is None or existing.last_event_at is None:
            return False
        if event_at < existing.last_event_at:
            logger.info(
                "Ignoring stale event for subscription %s (event=%s stored=%s)",
                subscription_id,
                event_at.isoformat(),
                existing.last_event_at.isoformat(),
            )
            return True
        return False


@dataclass(slots=True)
class WebhookDispatcher:
    """Authenticates provider events and routes them by type."""

    gateway: PaymentGateway
    projector: SubscriptionProjector

    def handle(self, payload: bytes, signature: Optional[str]) -> Dict[str, bool]:
        # Verification raises InvalidSignatureError before anything is parsed.
        event = self.gateway.construct_event(payload, signature)
        self.dispatch(event)
        return {"received": True}

    def dispatch(self, event: Mapping[str, Any]) -> None:
        event_type = str(event.get("type") or "")
        handler = self._handlers().get(event_type)
        if handler is None:
            logger.info("Unhandled event type: %s", event_type)
            return

        data = event.get("data") or {}
        data_object = data.get("object") or {}
        event_at = _timestamp(event.get("created"))

        logger.info("Processing event %s (%s)", event.get("id"), event_type)
        try:
            handler(data_object, event_at)
        except Exception as exc:
            logger.exception("Webhook handler error for event %s (%s)", event.get("id"), event_type)
            raise WebhookHandlerError("Webhook handler failed") from exc

    def _handlers(self) -> Dict[str, EventHandler]:
        return {
            WebhookEventType.CHECKOUT_SESSION_COMPLETED.value: self._on_checkout_completed,
            WebhookEventType.SUBSCRIPTION_CREATED.value: self._on_subscription_changed,
            WebhookEventType.SUBSCRIPTION_UPDATED.value: self._on_subscription_changed,
            WebhookEventType.SUBSCRIPTION_DELETED.value: self._on_subscription_deleted,
            WebhookEventType.INVOICE_PAID.value: self._on_invoice_paid,
            WebhookEventType.INVOICE_PAYMENT_SUCCEEDED.value: self._on_invoice_paid,
            WebhookEventType.INVOICE_PAYMENT_FAILED.value: self._on_invoice_payment_failed,
            WebhookEventType.PAYMENT_INTENT_SUCCEEDED.value: self._on_payment_intent_succeeded,
        }

    def _on_checkout_completed(self, session: Mapping[str, Any], event_at: Optional[datetime]) -> None:
        account_id = _account_id(session)
        if not account_id:
            return

        if session.get("mode") != "subscription":
            logger.info("One-time payment completed for account %s session=%s", account_id, session.get("id"))
            return

        subscription_id = _object_id(session.get("subscription"))
        if not subscription_id:
            logger.warning("Checkout session %s completed without a subscription", session.get("id"))
            return
        subscription = self.gateway.retrieve_subscription(subscription_id)
        self.projector.project(subscription, event_at=event_at)

    def _on_subscription_changed(self, subscription: Mapping[str, Any], event_at: Optional[datetime]) -> None:
        self.projector.project(subscription, event_at=event_at)

    def _on_subscription_deleted(self, subscription: Mapping[str, Any], event_at: Optional[datetime]) -> None:
        self.projector.cancel(subscription, event_at=event_at)

    def _on_invoice_paid(self, invoice: Mapping[str, Any], event_at: Optional[datetime]) -> None:
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            return
        subscription = self.gateway.retrieve_subscription(subscription_id)
        self.projector.project(subscription, event_at=event_at)

    def _on_invoice_payment_failed(self, invoice: Mapping[str, Any], event_at: Optional[datetime]) -> None:
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            return
        self.projector.mark_past_due(subscription_id, event_at=event_at)

    def _on_payment_intent_succeeded(self, intent: Mapping[str, Any], event_at: Optional[datetime]) -> None:
        account_id = _account_id(intent)
        if not account_id:
            return
        logger.info(
            "Payment succeeded for account %s amount=%s %s",
            account_id,
            intent.get("amount"),
            intent.get("currency"),
        )


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, Mapping) else {}


def _account_id(obj: Mapping[str, Any]) -> Optional[str]:
    value = _metadata(obj).get(ACCOUNT_METADATA_KEY)
    return str(value) if value else None


def _object_id(value: Any) -> Optional[str]:
    """Return the id of a provider reference that may or may not be expanded."""

    if not value:
        return None
    if isinstance(value, Mapping):
        nested = value.get("id")
        return str(nested) if nested else None
    return str(value)


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = subscription.get("items")
    if not isinstance(items, Mapping):
        return {}
    data = items.get("data") or []
    return data[0] if data and isinstance(data[0], Mapping) else {}


def _price_id(subscription: Mapping[str, Any]) -> Optional[str]:
    return _object_id(_first_item(subscription).get("price"))


def _period_bound(subscription: Mapping[str, Any], key: str) -> Optional[datetime]:
    # Newer API versions report billing periods per item.
    value = subscription.get(key)
    if value is None:
        value = _first_item(subscription).get(key)
    return _timestamp(value)


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    subscription_id = _object_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    parent = invoice.get("parent")
    if isinstance(parent, Mapping):
        details = parent.get("subscription_details")
        if isinstance(details, Mapping):
            return _object_id(details.get("subscription"))
    return None


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError("Unsupported timestamp value")


__all__ = ["SubscriptionProjector", "WebhookDispatcher"]
