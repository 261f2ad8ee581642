"""API schemas for billing endpoints."""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import BillingCycle, CheckoutMode, CheckoutSession, PlanDefinition, SubscriptionTier


class CheckoutSessionRequest(BaseModel):
    mode: CheckoutMode = CheckoutMode.SUBSCRIPTION
    price_id: Optional[str] = Field(alias="priceId", default=None)
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    success_url: Optional[str] = Field(alias="successUrl", default=None)
    cancel_url: Optional[str] = Field(alias="cancelUrl", default=None)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    url: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_checkout(cls, session: CheckoutSession) -> "CheckoutSessionResponse":
        return cls(session_id=session.session_id, url=session.url)


class PortalSessionRequest(BaseModel):
    return_url: Optional[str] = Field(alias="returnUrl", default=None)

    model_config = ConfigDict(populate_by_name=True)


class PortalSessionResponse(BaseModel):
    url: str

    model_config = ConfigDict(populate_by_name=True)


class WebhookAcknowledgement(BaseModel):
    received: bool = True


class PlanResponse(BaseModel):
    tier: SubscriptionTier
    name: str
    monthly_price: Decimal = Field(alias="monthlyPrice")
    yearly_price: Decimal = Field(alias="yearlyPrice")
    features: List[str]
    price_ids: Dict[BillingCycle, str] = Field(alias="priceIds", default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: PlanDefinition) -> "PlanResponse":
        return cls(
            tier=plan.tier,
            name=plan.display_name,
            monthly_price=plan.monthly_price,
            yearly_price=plan.yearly_price,
            features=list(plan.features),
            price_ids=dict(plan.price_ids),
        )


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]
