"""Domain models for the billing system."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionTier(str, Enum):
    """Subscription level gating premium features."""

    FREE = "FREE"
    PREMIUM = "PREMIUM"
    BREEDER = "BREEDER"


class AccountRole(str, Enum):
    """Community role chosen at registration."""

    PET_OWNER = "PET_OWNER"
    PET_LOVER = "PET_LOVER"
    BREEDER = "BREEDER"


class BillingCycle(str, Enum):
    """Supported billing frequencies."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class CheckoutMode(str, Enum):
    """Kind of checkout the provider should host."""

    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"


class WebhookEventType(str, Enum):
    """Provider event types that the application reacts to."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"


class ProjectionOutcome(str, Enum):
    """Result of applying a provider event to local state."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    STALE = "stale"


class Account(BaseModel):
    """Local account as seen by the billing subsystem."""

    account_id: str
    email: str
    display_name: str
    role: AccountRole = AccountRole.PET_OWNER
    external_customer_id: Optional[str] = None
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SubscriptionRecord(BaseModel):
    """Local projection of a provider subscription."""

    external_subscription_id: str
    account_id: str
    tier: SubscriptionTier
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    last_event_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_past_due(self) -> bool:
        """Return ``True`` when the subscription is in a past-due state."""
        return self.status == "past_due"


class BillingCustomer(BaseModel):
    """External billing customer linked to a local account."""

    customer_id: str
    email: Optional[str] = None
    created: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CheckoutSession(BaseModel):
    """Return value of a checkout session creation request."""

    session_id: str
    url: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PortalSession(BaseModel):
    """Hosted self-service management session."""

    url: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PlanDefinition(BaseModel):
    """Display data for a subscription tier."""

    tier: SubscriptionTier
    display_name: str
    monthly_price: Decimal = Decimal("0")
    yearly_price: Decimal = Decimal("0")
    features: Tuple[str, ...] = ()
    price_ids: Dict[BillingCycle, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)
