"""Stripe implementation of the payment gateway."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import stripe

from .config import BillingConfig
from .exceptions import BillingConfigurationError, InvalidSignatureError

logger = logging.getLogger("billing.stripe")


def _to_plain(obj: Any) -> Dict[str, Any]:
    """Convert an SDK resource into nested plain dicts."""

    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripePaymentGateway:
    """Adapts an explicitly constructed :class:`stripe.StripeClient`.

    Outbound calls use a bounded timeout and never retry; retries belong to
    the caller for sessions and to the provider for webhook deliveries.
    """

    def __init__(
        self,
        client: Any,
        *,
        webhook_secret: str,
        webhook_tolerance: int = 300,
    ) -> None:
        self._client = client
        self._webhook_secret = webhook_secret
        self._webhook_tolerance = webhook_tolerance

    @classmethod
    def from_config(cls, config: BillingConfig) -> "StripePaymentGateway":
        if not config.stripe_secret_key:
            raise BillingConfigurationError("STRIPE_SECRET_KEY is not set")
        if not config.webhook_secret:
            raise BillingConfigurationError("STRIPE_WEBHOOK_SECRET is not set")

        client = stripe.StripeClient(
            config.stripe_secret_key,
            max_network_retries=0,
            http_client=stripe.RequestsClient(timeout=config.timeout_seconds),
        )
        return cls(
            client,
            webhook_secret=config.webhook_secret,
            webhook_tolerance=config.webhook_tolerance,
        )

    def retrieve_customer(self, customer_id: str) -> Optional[Mapping[str, Any]]:
        try:
            customer = self._client.customers.retrieve(customer_id)
        except stripe.InvalidRequestError as exc:
            if exc.code == "resource_missing":
                logger.warning("Stripe customer %s does not exist", customer_id)
                return None
            raise
        return _to_plain(customer)

    def create_customer(
        self,
        *,
        email: str,
        name: str,
        metadata: Dict[str, str],
    ) -> Mapping[str, Any]:
        customer = self._client.customers.create(
            params={"email": email, "name": name, "metadata": metadata}
        )
        return _to_plain(customer)

    def create_checkout_session(self, params: Dict[str, Any]) -> Mapping[str, Any]:
        return _to_plain(self._client.checkout.sessions.create(params=params))

    def create_portal_session(self, *, customer_id: str, return_url: str) -> Mapping[str, Any]:
        session = self._client.billing_portal.sessions.create(
            params={"customer": customer_id, "return_url": return_url}
        )
        return _to_plain(session)

    def retrieve_subscription(self, subscription_id: str) -> Mapping[str, Any]:
        return _to_plain(self._client.subscriptions.retrieve(subscription_id))

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Mapping[str, Any]:
        if not signature:
            raise InvalidSignatureError("Missing Stripe signature header")
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
                tolerance=self._webhook_tolerance,
            )
        except ValueError as exc:
            logger.warning("Webhook payload could not be parsed: %s", exc)
            raise InvalidSignatureError("Invalid signature") from exc
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise InvalidSignatureError("Invalid signature") from exc
        return _to_plain(event)


__all__ = ["StripePaymentGateway"]
