from __future__ import annotations

from decimal import Decimal

import pytest

from mopets.app.billing import (
    BillingConfigurationError,
    BillingCycle,
    PriceCatalog,
    SubscriptionTier,
    UnmappedPriceError,
    load_billing_config,
)


def _catalog(strict: bool = False) -> PriceCatalog:
    return PriceCatalog(
        prices={
            (SubscriptionTier.PREMIUM, BillingCycle.MONTHLY): "price_1PqA",
            (SubscriptionTier.PREMIUM, BillingCycle.YEARLY): "price_1PqB",
            (SubscriptionTier.BREEDER, BillingCycle.MONTHLY): "price_1PqC",
        },
        strict=strict,
    )


@pytest.mark.parametrize(
    "price_id, expected",
    [
        ("price_1PqA", SubscriptionTier.PREMIUM),
        ("price_1PqB", SubscriptionTier.PREMIUM),
        ("price_1PqC", SubscriptionTier.BREEDER),
    ],
)
def test_tier_for_price_exact_match(price_id, expected):
    assert _catalog().tier_for_price(price_id) == expected


@pytest.mark.parametrize(
    "price_id, expected",
    [
        ("price_premium_legacy", SubscriptionTier.PREMIUM),
        ("PRICE_BREEDER_2023", SubscriptionTier.BREEDER),
        ("price_premium_breeder_bundle", SubscriptionTier.PREMIUM),
    ],
)
def test_tier_for_price_falls_back_to_naming_convention(price_id, expected, caplog):
    assert _catalog().tier_for_price(price_id) == expected
    assert "naming convention" in caplog.text


@pytest.mark.parametrize("price_id", [None, "", "price_unknown"])
def test_tier_for_unmapped_price_is_free(price_id):
    assert _catalog().tier_for_price(price_id) == SubscriptionTier.FREE


def test_strict_catalog_rejects_unmapped_price():
    catalog = _catalog(strict=True)

    assert catalog.tier_for_price("price_1PqC") == SubscriptionTier.BREEDER
    with pytest.raises(UnmappedPriceError):
        catalog.tier_for_price("price_premium_legacy")


def test_duplicate_price_ids_rejected():
    with pytest.raises(BillingConfigurationError):
        PriceCatalog(
            prices={
                (SubscriptionTier.PREMIUM, BillingCycle.MONTHLY): "price_same",
                (SubscriptionTier.BREEDER, BillingCycle.MONTHLY): "price_same",
            }
        )


def test_empty_price_id_rejected():
    with pytest.raises(BillingConfigurationError):
        PriceCatalog(prices={(SubscriptionTier.PREMIUM, BillingCycle.MONTHLY): "  "})


def test_free_tier_cannot_be_priced():
    with pytest.raises(BillingConfigurationError):
        PriceCatalog(prices={(SubscriptionTier.FREE, BillingCycle.MONTHLY): "price_free"})


def test_price_for_lookup():
    catalog = _catalog()

    assert catalog.price_for(SubscriptionTier.PREMIUM) == "price_1PqA"
    assert catalog.price_for(SubscriptionTier.PREMIUM, BillingCycle.YEARLY) == "price_1PqB"
    with pytest.raises(LookupError):
        catalog.price_for(SubscriptionTier.BREEDER, BillingCycle.YEARLY)


def test_plans_include_configured_price_ids():
    plans = {plan.tier: plan for plan in _catalog().plans()}

    assert list(plans) == [SubscriptionTier.FREE, SubscriptionTier.PREMIUM, SubscriptionTier.BREEDER]
    assert plans[SubscriptionTier.FREE].price_ids == {}
    assert plans[SubscriptionTier.PREMIUM].price_ids == {
        BillingCycle.MONTHLY: "price_1PqA",
        BillingCycle.YEARLY: "price_1PqB",
    }
    assert plans[SubscriptionTier.BREEDER].monthly_price == Decimal("19.99")
    assert plans[SubscriptionTier.BREEDER].display_name == "Breeder Pro"


def test_catalog_from_environment():
    config = load_billing_config(
        {
            "STRIPE_PREMIUM_PRICE_ID": "price_env_premium",
            "STRIPE_BREEDER_PRICE_ID": "price_env_breeder",
            "BILLING_STRICT_PRICE_MAPPING": "true",
        }
    )
    catalog = PriceCatalog.from_config(config)

    assert catalog.strict is True
    assert catalog.tier_for_price("price_env_breeder") == SubscriptionTier.BREEDER
    assert catalog.tier_for_price("price_premium_yearly") == SubscriptionTier.PREMIUM


def test_load_billing_config_defaults():
    config = load_billing_config({})

    assert config.currency == "usd"
    assert config.app_base_url == "http://localhost:3000"
    assert config.timeout_seconds == 10.0
    assert config.webhook_tolerance == 300
    assert config.strict_price_mapping is False
    assert config.default_success_url == "http://localhost:3000/subscription/success"
    assert config.default_portal_return_url == "http://localhost:3000/profile"


def test_load_billing_config_rejects_bad_numbers():
    with pytest.raises(ValueError):
        load_billing_config({"STRIPE_WEBHOOK_TOLERANCE": "soon"})
