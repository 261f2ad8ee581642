"""Static catalog definitions for tiers and their provider prices."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Tuple

from .config import BillingConfig
from .exceptions import BillingConfigurationError, UnmappedPriceError
from .models import BillingCycle, PlanDefinition, SubscriptionTier

logger = logging.getLogger("billing")

FREE_PLAN = PlanDefinition(
    tier=SubscriptionTier.FREE,
    display_name="Free",
    features=(
        "Basic community access",
        "View public posts",
        "Follow other users",
        "Basic messaging",
        "Standard support",
    ),
)

PREMIUM_PLAN = PlanDefinition(
    tier=SubscriptionTier.PREMIUM,
    display_name="Premium",
    monthly_price=Decimal("9.99"),
    yearly_price=Decimal("95.90"),
    features=(
        "Ad-free experience",
        "Unlimited messaging",
        "Premium content access",
        "Advanced search filters",
        "Priority support",
        "Exclusive community groups",
        "Monthly breed spotlights",
    ),
)

BREEDER_PLAN = PlanDefinition(
    tier=SubscriptionTier.BREEDER,
    display_name="Breeder Pro",
    monthly_price=Decimal("19.99"),
    yearly_price=Decimal("191.90"),
    features=(
        "All Premium features",
        "Professional breeder profile",
        "Litter management tools",
        "Puppy tracking system",
        "Featured listings",
        "Advanced analytics",
        "Breeding calendar",
        "Health record management",
        "Priority marketplace placement",
    ),
)

PLAN_DEFINITIONS: Tuple[PlanDefinition, ...] = (FREE_PLAN, PREMIUM_PLAN, BREEDER_PLAN)

# Legacy naming convention for price identifiers created in the dashboard.
# Order matters: the first marker found wins.
TIER_MARKERS: Tuple[Tuple[str, SubscriptionTier], ...] = (
    ("premium", SubscriptionTier.PREMIUM),
    ("breeder", SubscriptionTier.BREEDER),
)

PriceSlot = Tuple[SubscriptionTier, BillingCycle]


@dataclass(frozen=True)
class PriceCatalog:
    """Explicit mapping between paid tiers and provider price identifiers."""

    prices: Mapping[PriceSlot, str]
    strict: bool = False
    _by_price: Dict[str, SubscriptionTier] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_price: Dict[str, SubscriptionTier] = {}
        for (tier, cycle), price_id in self.prices.items():
            if tier == SubscriptionTier.FREE:
                raise BillingConfigurationError("The FREE tier cannot be mapped to a price")
            if not price_id or not price_id.strip():
                raise BillingConfigurationError(
                    f"Price identifier is not configured for {tier.value}/{cycle.value}"
                )
            if price_id in by_price:
                raise BillingConfigurationError(
                    f"Price identifier {price_id!r} is mapped to more than one plan"
                )
            by_price[price_id] = tier
        object.__setattr__(self, "_by_price", by_price)

    @classmethod
    def from_config(cls, config: BillingConfig) -> "PriceCatalog":
        return cls(
            prices={
                (SubscriptionTier.PREMIUM, BillingCycle.MONTHLY): config.premium_monthly_price_id,
                (SubscriptionTier.PREMIUM, BillingCycle.YEARLY): config.premium_yearly_price_id,
                (SubscriptionTier.BREEDER, BillingCycle.MONTHLY): config.breeder_monthly_price_id,
                (SubscriptionTier.BREEDER, BillingCycle.YEARLY): config.breeder_yearly_price_id,
            },
            strict=config.strict_price_mapping,
        )

    def price_for(self, tier: SubscriptionTier, cycle: BillingCycle = BillingCycle.MONTHLY) -> str:
        try:
            return self.prices[(tier, cycle)]
        except KeyError as exc:
            raise LookupError(f"No price configured for {tier.value}/{cycle.value}") from exc

    def tier_for_price(self, price_id: Optional[str]) -> SubscriptionTier:
        """Derive the tier a provider price identifier grants."""

        if price_id and price_id in self._by_price:
            return self._by_price[price_id]

        if self.strict:
            raise UnmappedPriceError(f"Price identifier {price_id!r} is not mapped to a tier")

        lowered = (price_id or "").lower()
        for marker, tier in TIER_MARKERS:
            if marker in lowered:
                logger.warning("Price %s matched tier %s by naming convention", price_id, tier.value)
                return tier

        logger.warning("Price %s is not mapped to a paid tier; treating as FREE", price_id)
        return SubscriptionTier.FREE

    def plans(self) -> List[PlanDefinition]:
        """Return plan definitions enriched with their configured price ids."""

        result: List[PlanDefinition] = []
        for plan in PLAN_DEFINITIONS:
            price_ids = {
                cycle: price_id
                for (tier, cycle), price_id in self.prices.items()
                if tier == plan.tier
            }
            result.append(plan.model_copy(update={"price_ids": price_ids}))
        return result


__all__ = [
    "BREEDER_PLAN",
    "FREE_PLAN",
    "PLAN_DEFINITIONS",
    "PREMIUM_PLAN",
    "PriceCatalog",
    "TIER_MARKERS",
]
