"""Billing configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the Stripe integration."""

    stripe_secret_key: str
    webhook_secret: str
    currency: str
    app_base_url: str
    timeout_seconds: float
    webhook_tolerance: int
    premium_monthly_price_id: str
    premium_yearly_price_id: str
    breeder_monthly_price_id: str
    breeder_yearly_price_id: str
    strict_price_mapping: bool

    @property
    def default_success_url(self) -> str:
        return f"{self.app_base_url}/subscription/success"

    @property
    def default_cancel_url(self) -> str:
        return f"{self.app_base_url}/subscription/cancel"

    @property
    def default_portal_return_url(self) -> str:
        return f"{self.app_base_url}/profile"


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    app_base_url = (env_mapping.get("APP_BASE_URL") or "http://localhost:3000").rstrip("/")

    return BillingConfig(
        stripe_secret_key=(env_mapping.get("STRIPE_SECRET_KEY") or "").strip(),
        webhook_secret=(env_mapping.get("STRIPE_WEBHOOK_SECRET") or "").strip(),
        currency=(env_mapping.get("BILLING_CURRENCY") or "usd").strip().lower(),
        app_base_url=app_base_url,
        timeout_seconds=max(1.0, _to_float(env_mapping.get("STRIPE_TIMEOUT_SECONDS"), default=10.0)),
        webhook_tolerance=max(0, _to_int(env_mapping.get("STRIPE_WEBHOOK_TOLERANCE"), default=300)),
        premium_monthly_price_id=env_mapping.get("STRIPE_PREMIUM_PRICE_ID", "price_premium_monthly"),
        premium_yearly_price_id=env_mapping.get("STRIPE_PREMIUM_YEARLY_PRICE_ID", "price_premium_yearly"),
        breeder_monthly_price_id=env_mapping.get("STRIPE_BREEDER_PRICE_ID", "price_breeder_monthly"),
        breeder_yearly_price_id=env_mapping.get("STRIPE_BREEDER_YEARLY_PRICE_ID", "price_breeder_yearly"),
        strict_price_mapping=_to_bool(env_mapping.get("BILLING_STRICT_PRICE_MAPPING"), default=False),
    )


__all__ = ["BillingConfig", "load_billing_config"]
