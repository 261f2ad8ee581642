"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..billing import (
    BillingConfig,
    BillingService,
    PriceCatalog,
    SubscriptionProjector,
    WebhookDispatcher,
    load_billing_config,
)
from ..billing.repository import PostgresBillingRepository
from ..billing.stripe_gateway import StripePaymentGateway


logger = logging.getLogger("billing")


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_price_catalog() -> PriceCatalog:
    return PriceCatalog.from_config(get_billing_config())


@lru_cache(maxsize=1)
def get_payment_gateway() -> StripePaymentGateway:
    gateway = StripePaymentGateway.from_config(get_billing_config())
    logger.info("Stripe gateway initialised")
    return gateway


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    return BillingService(
        repository=PostgresBillingRepository(),
        gateway=get_payment_gateway(),
        config=get_billing_config(),
    )


@lru_cache(maxsize=1)
def get_webhook_dispatcher() -> WebhookDispatcher:
    projector = SubscriptionProjector(
        repository=PostgresBillingRepository(),
        catalog=get_price_catalog(),
    )
    return WebhookDispatcher(gateway=get_payment_gateway(), projector=projector)


__all__ = [
    "get_billing_config",
    "get_billing_service",
    "get_payment_gateway",
    "get_price_catalog",
    "get_webhook_dispatcher",
]
