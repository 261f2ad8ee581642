"""Billing domain package: Stripe customers, checkout, portal and webhooks."""

from .catalog import PLAN_DEFINITIONS, PriceCatalog
from .config import BillingConfig, load_billing_config
from .exceptions import (
    BillingConfigurationError,
    BillingError,
    CheckoutCreationError,
    InvalidSignatureError,
    NotFoundError,
    PortalCreationError,
    UnmappedPriceError,
    UpstreamLookupError,
    ValidationError,
    WebhookHandlerError,
)
from .models import (
    Account,
    AccountRole,
    BillingCustomer,
    BillingCycle,
    CheckoutMode,
    CheckoutSession,
    PlanDefinition,
    PortalSession,
    ProjectionOutcome,
    SubscriptionRecord,
    SubscriptionTier,
    WebhookEventType,
)
from .service import (
    ACCOUNT_METADATA_KEY,
    BillingRepository,
    BillingService,
    PaymentGateway,
    to_minor_units,
)
from .webhooks import SubscriptionProjector, WebhookDispatcher

__all__ = [
    "ACCOUNT_METADATA_KEY",
    "Account",
    "AccountRole",
    "BillingConfig",
    "BillingConfigurationError",
    "BillingCustomer",
    "BillingCycle",
    "BillingError",
    "BillingRepository",
    "BillingService",
    "CheckoutCreationError",
    "CheckoutMode",
    "CheckoutSession",
    "InvalidSignatureError",
    "NotFoundError",
    "PLAN_DEFINITIONS",
    "PaymentGateway",
    "PlanDefinition",
    "PortalCreationError",
    "PortalSession",
    "PriceCatalog",
    "ProjectionOutcome",
    "SubscriptionProjector",
    "SubscriptionRecord",
    "SubscriptionTier",
    "UnmappedPriceError",
    "UpstreamLookupError",
    "ValidationError",
    "WebhookDispatcher",
    "WebhookEventType",
    "load_billing_config",
    "to_minor_units",
]
