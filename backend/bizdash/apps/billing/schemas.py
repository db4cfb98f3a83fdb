# backend/bizdash/apps/billing/schemas.py

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from .models import BillingPeriod, Plan


# ---------------------------------------------------------------------------
# REQUESTS
# ---------------------------------------------------------------------------


class CheckoutRequest(BaseModel):
    plan: Plan = Field(..., description="Paid plan to subscribe to ('starter' or 'pro').")
    billing_period: BillingPeriod = BillingPeriod.MONTHLY


class ChangePlanRequest(BaseModel):
    plan: Plan


# ---------------------------------------------------------------------------
# RESPONSES
# ---------------------------------------------------------------------------


class BillingStatusRead(BaseModel):
    """
    Status shown on the billing settings page.

    `plan` / `commission_rate` come from the stored record; the
    cancellation flag, trial window and billing period are merged in from
    the processor's live subscription when one exists.
    """

    organization_id: str
    plan: Plan
    plan_status: str
    subscription_end_date: Optional[datetime] = None
    processor_subscription_id: Optional[str] = None
    commission_rate: Decimal
    cancel_at_period_end: bool = False
    is_trialing: bool = False
    trial_end: Optional[datetime] = None
    billing_period: BillingPeriod = BillingPeriod.MONTHLY


class ActionOutcome(str, enum.Enum):
    OK = "ok"
    RESET_TO_FREE = "reset_to_free"


class BillingActionResult(BaseModel):
    """
    Result of a lifecycle operation.

    RESET_TO_FREE is a normal outcome: the processor no longer had the
    subscription and the tenant was moved back to the free plan.
    """

    outcome: ActionOutcome = ActionOutcome.OK
    message: Optional[str] = None
    status: Optional[BillingStatusRead] = None


class CheckoutResponse(BaseModel):
    client_secret: Optional[str]
    session_id: str
    trial_days: Optional[int] = None


class PortalResponse(BaseModel):
    url: str


class SubscriptionHistoryRead(BaseModel):
    id: str
    organization_id: str
    plan: Plan
    status: str
    processor_subscription_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BillingErrorDetail(BaseModel):
    code: str
    message: str


class BillingErrorResponse(BaseModel):
    detail: BillingErrorDetail
