# backend/bizdash/apps/billing/config.py
"""
Billing configuration.

Values come from the environment at startup:

    STRIPE_SECRET_KEY
    STRIPE_TIMEOUT_SECONDS          (default 20)
    APP_URL                         (base for checkout / portal return URLs)
    STRIPE_PRICE_STARTER_MONTHLY    STRIPE_PRICE_STARTER_ANNUAL
    STRIPE_PRICE_PRO_MONTHLY        STRIPE_PRICE_PRO_ANNUAL
    BILLING_TRIAL_DAYS              (default 14)
    BILLING_FREE_COMMISSION_RATE    (default 0.05)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .models import BillingPeriod, Plan
from .policy import DEFAULT_FREE_COMMISSION_RATE, DEFAULT_TRIAL_DAYS, PlanPolicy


PriceKey = Tuple[Plan, BillingPeriod]

_PRICE_ENV_VARS: Mapping[PriceKey, str] = {
    (Plan.STARTER, BillingPeriod.MONTHLY): "STRIPE_PRICE_STARTER_MONTHLY",
    (Plan.STARTER, BillingPeriod.ANNUAL): "STRIPE_PRICE_STARTER_ANNUAL",
    (Plan.PRO, BillingPeriod.MONTHLY): "STRIPE_PRICE_PRO_MONTHLY",
    (Plan.PRO, BillingPeriod.ANNUAL): "STRIPE_PRICE_PRO_ANNUAL",
}


@dataclass(frozen=True)
class PriceCatalog:
    """Static mapping of (plan, billing period) to processor price ids."""

    prices: Mapping[PriceKey, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "PriceCatalog":
        prices: Dict[PriceKey, str] = {}
        for key, env_var in _PRICE_ENV_VARS.items():
            value = (os.getenv(env_var) or "").strip()
            if value:
                prices[key] = value
        return cls(prices=prices)

    def find(self, plan: Plan, period: BillingPeriod) -> Optional[str]:
        return self.prices.get((Plan(plan), BillingPeriod(period)))

    def price_for(self, plan: Plan, period: BillingPeriod) -> str:
        price_id = self.find(plan, period)
        if not price_id:
            raise ConfigurationError(
                f"No processor price configured for plan '{Plan(plan).value}' "
                f"billed {BillingPeriod(period).value}."
            )
        return price_id


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class BillingSettings:
    stripe_secret_key: str = ""
    stripe_timeout_seconds: int = 20
    app_url: str = "http://localhost:3000"
    catalog: PriceCatalog = field(default_factory=PriceCatalog)
    policy: PlanPolicy = field(default_factory=PlanPolicy)

    @classmethod
    def from_env(cls) -> "BillingSettings":
        return cls(
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            stripe_timeout_seconds=_env_int("STRIPE_TIMEOUT_SECONDS", 20),
            app_url=(os.getenv("APP_URL") or "http://localhost:3000").rstrip("/"),
            catalog=PriceCatalog.from_env(),
            policy=PlanPolicy(
                free_commission_rate=_env_decimal(
                    "BILLING_FREE_COMMISSION_RATE", DEFAULT_FREE_COMMISSION_RATE
                ),
                trial_days=_env_int("BILLING_TRIAL_DAYS", DEFAULT_TRIAL_DAYS),
            ),
        )

    @property
    def checkout_return_url(self) -> str:
        return (
            f"{self.app_url}/dashboard/settings?tab=billing&success=true"
            "&session_id={CHECKOUT_SESSION_ID}"
        )

    @property
    def portal_return_url(self) -> str:
        return f"{self.app_url}/dashboard/settings?tab=billing"
