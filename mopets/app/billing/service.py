"""Core service coordinating billing flows with the payment provider."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from .config import BillingConfig
from .exceptions import (
    CheckoutCreationError,
    NotFoundError,
    PortalCreationError,
    UpstreamLookupError,
    ValidationError,
)
from .models import (
    Account,
    BillingCustomer,
    CheckoutMode,
    CheckoutSession,
    PortalSession,
    SubscriptionRecord,
    SubscriptionTier,
)

logger = logging.getLogger("billing")

# Metadata keys stored on provider objects so webhook events can be traced
# back to a local account.
ACCOUNT_METADATA_KEY = "userId"
ROLE_METADATA_KEY = "role"

Amount = Union[Decimal, float, int, str]


class PaymentGateway(Protocol):
    """External payment processor integration."""

    def retrieve_customer(self, customer_id: str) -> Optional[Mapping[str, Any]]:
        """Return the remote customer, or ``None`` when it no longer exists."""

    def create_customer(
        self,
        *,
        email: str,
        name: str,
        metadata: Dict[str, str],
    ) -> Mapping[str, Any]:
        """Create a remote customer."""

    def create_checkout_session(self, params: Dict[str, Any]) -> Mapping[str, Any]:
        """Create a provider hosted checkout session."""

    def create_portal_session(self, *, customer_id: str, return_url: str) -> Mapping[str, Any]:
        """Create a provider hosted billing portal session."""

    def retrieve_subscription(self, subscription_id: str) -> Mapping[str, Any]:
        """Fetch the current state of a subscription."""

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Mapping[str, Any]:
        """Authenticate a webhook payload and return the parsed event."""


class BillingRepository(Protocol):
    """Persistence operations required by the billing subsystem."""

    def get_account(self, account_id: str) -> Optional[Account]:
        ...

    def claim_external_customer_id(self, account_id: str, customer_id: str) -> Optional[Account]:
        """Store ``customer_id`` unless one is already set; return the stored account."""

    def get_subscription(self, external_subscription_id: str) -> Optional[SubscriptionRecord]:
        ...

    def save_subscription_projection(
        self,
        record: SubscriptionRecord,
        *,
        account_tier: SubscriptionTier,
        external_customer_id: Optional[str],
    ) -> Optional[SubscriptionRecord]:
        """Upsert ``record`` and sync the owning account in one transaction.

        Returns ``None`` when the stored record carries a newer event.
        """

    def update_subscription_status(
        self,
        external_subscription_id: str,
        *,
        status: str,
        event_at: Optional[datetime],
    ) -> Optional[SubscriptionRecord]:
        ...


def to_minor_units(amount: Amount) -> int:
    """Convert whole currency units to the provider's integer minor units."""

    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("amount must be a number") from exc
    if not value.is_finite():
        raise ValidationError("amount must be a number")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(slots=True)
class BillingService:
    """Resolves customers and creates provider hosted sessions."""

    repository: BillingRepository
    gateway: PaymentGateway
    config: BillingConfig

    def resolve_customer(self, account_id: str) -> BillingCustomer:
        account = self._require_account(account_id)
        return self._resolve_customer(account)

    def create_checkout_session(
        self,
        *,
        account_id: str,
        mode: CheckoutMode,
        price_id: Optional[str] = None,
        amount: Optional[Amount] = None,
        description: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> CheckoutSession:
        account = self._require_account(account_id)

        caller_metadata = {str(k): str(v) for k, v in (metadata or {}).items()}
        session_metadata = {**caller_metadata, ACCOUNT_METADATA_KEY: account.account_id}

        params: Dict[str, Any] = {
            "mode": mode.value,
            "success_url": success_url or self.config.default_success_url,
            "cancel_url": cancel_url or self.config.default_cancel_url,
            "metadata": session_metadata,
        }

        if mode == CheckoutMode.SUBSCRIPTION:
            if not price_id or not price_id.strip():
                raise ValidationError("price identifier required")
            params["line_items"] = [{"price": price_id.strip(), "quantity": 1}]
            params["subscription_data"] = {
                "metadata": {
                    ACCOUNT_METADATA_KEY: account.account_id,
                    ROLE_METADATA_KEY: account.role.value,
                }
            }
        else:
            if amount is None or not description or not description.strip():
                raise ValidationError("amount and description required for payment")
            unit_amount = to_minor_units(amount)
            if unit_amount <= 0:
                raise ValidationError("amount must be positive")
            params["line_items"] = [
                {
                    "price_data": {
                        "currency": self.config.currency,
                        "product_data": {"name": description.strip(), "metadata": caller_metadata},
                        "unit_amount": unit_amount,
                    },
                    "quantity": 1,
                }
            ]
            params["payment_intent_data"] = {"metadata": dict(session_metadata)}

        try:
            customer = self._resolve_customer(account)
            params["customer"] = customer.customer_id
            session = self.gateway.create_checkout_session(params)
        except Exception as exc:
            logger.exception("Stripe checkout error for account %s", account.account_id)
            raise CheckoutCreationError("Failed to create checkout session") from exc

        logger.info(
            "Checkout session %s created account=%s mode=%s",
            session.get("id"),
            account.account_id,
            mode.value,
        )
        return CheckoutSession(session_id=str(session["id"]), url=session.get("url"))

    def create_portal_session(self, account_id: str, return_url: Optional[str] = None) -> PortalSession:
        account = self._require_account(account_id)
        if not account.external_customer_id:
            raise NotFoundError("No billing customer found")

        try:
            session = self.gateway.create_portal_session(
                customer_id=account.external_customer_id,
                return_url=return_url or self.config.default_portal_return_url,
            )
        except Exception as exc:
            logger.exception("Customer portal error for account %s", account.account_id)
            raise PortalCreationError("Failed to create customer portal session") from exc

        url = session.get("url")
        if not url:
            logger.error("Portal session for account %s returned no url", account.account_id)
            raise PortalCreationError("Failed to create customer portal session")
        return PortalSession(url=str(url))

    def _require_account(self, account_id: str) -> Account:
        account = self.repository.get_account(account_id)
        if account is None:
            raise NotFoundError("Account not found")
        return account

    def _resolve_customer(self, account: Account) -> BillingCustomer:
        if account.external_customer_id:
            remote = self.gateway.retrieve_customer(account.external_customer_id)
            if remote is None or remote.get("deleted"):
                raise UpstreamLookupError(
                    f"Billing customer {account.external_customer_id} no longer exists"
                )
            return BillingCustomer(customer_id=account.external_customer_id, email=remote.get("email"))

        remote = self.gateway.create_customer(
            email=account.email,
            name=account.display_name,
            metadata={
                ACCOUNT_METADATA_KEY: account.account_id,
                ROLE_METADATA_KEY: account.role.value,
            },
        )
        created_id = str(remote["id"])
        stored = self.repository.claim_external_customer_id(account.account_id, created_id)
        if stored is None:
            raise NotFoundError("Account not found")

        if stored.external_customer_id != created_id:
            logger.warning(
                "Concurrent customer provisioning for account %s; keeping %s, orphaned %s",
                account.account_id,
                stored.external_customer_id,
                created_id,
            )
            return BillingCustomer(customer_id=str(stored.external_customer_id), email=account.email)

        logger.info("Created billing customer %s for account %s", created_id, account.account_id)
        return BillingCustomer(customer_id=created_id, email=account.email, created=True)


__all__ = [
    "ACCOUNT_METADATA_KEY",
    "BillingRepository",
    "BillingService",
    "PaymentGateway",
    "ROLE_METADATA_KEY",
    "to_minor_units",
]
