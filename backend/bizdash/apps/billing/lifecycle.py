# backend/bizdash/apps/billing/lifecycle.py
"""
Lifecycle controller: cancel, resume and change plan.

Ordering rule for every operation: the processor call happens first and
local state is persisted only after it succeeded. A StaleReferenceError
from the processor is not a failure here; it heals the record and returns
a RESET_TO_FREE result. Other processor errors propagate with no local
change.

The webhook-facing entry points at the bottom (`confirm_activation`,
`apply_processor_status`, `apply_subscription_deleted`) accept facts the
processor reported asynchronously; they do not verify signatures and do
not second-guess the reported status.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from bizdash.apps.accounts import permissions
from bizdash.apps.accounts.models import User
from . import audit, models, schemas, store
from .config import BillingSettings
from .errors import ConfigurationError, GatewayError, NoOpError, NotFoundError, StaleReferenceError
from .gateway import PaymentGateway
from .models import BillingPeriod, Plan, PlanStatus
from .policy import DEFAULT_POLICY, PlanPolicy
from .reconciliation import build_status, load_tenant_record, reset_result

logger = logging.getLogger(__name__)


def _require_subscription_id(record: models.BillingRecord, message: str) -> str:
    subscription_id = record.processor_subscription_id
    if not subscription_id:
        raise NotFoundError(message)
    return subscription_id


# ---------------------------------------------------------------------------
# CANCEL / RESUME
# ---------------------------------------------------------------------------


def cancel_subscription(
    db: Session,
    *,
    actor: User,
    gateway: PaymentGateway,
    policy: PlanPolicy = DEFAULT_POLICY,
) -> schemas.BillingActionResult:
    """
    Schedule cancellation at period end. The plan is kept until the period
    runs out, so nothing local changes and no history row is written;
    repeating the call is harmless.
    """
    organization_id, record = load_tenant_record(
        db, actor=actor, permission=permissions.MANAGE_SUBSCRIPTION
    )
    subscription_id = _require_subscription_id(record, "No active subscription.")

    try:
        subscription = gateway.set_cancel_at_period_end(subscription_id, True)
    except StaleReferenceError:
        return reset_result(
            db,
            organization_id=organization_id,
            stale_subscription_id=subscription_id,
            policy=policy,
        )

    audit.safe_record_audit_event(
        db,
        organization_id=organization_id,
        event=audit.CANCEL_SCHEDULED,
        details={"subscription_id": subscription_id},
    )
    logger.info("Cancellation scheduled for org %s (sub %s)", organization_id, subscription_id)
    return schemas.BillingActionResult(
        message="Your subscription will end at the close of the current billing period.",
        status=build_status(record, subscription),
    )


def resume_subscription(
    db: Session,
    *,
    actor: User,
    gateway: PaymentGateway,
    policy: PlanPolicy = DEFAULT_POLICY,
) -> schemas.BillingActionResult:
    organization_id, record = load_tenant_record(
        db, actor=actor, permission=permissions.MANAGE_SUBSCRIPTION
    )
    subscription_id = _require_subscription_id(record, "No active subscription.")

    try:
        subscription = gateway.set_cancel_at_period_end(subscription_id, False)
    except StaleReferenceError:
        return reset_result(
            db,
            organization_id=organization_id,
            stale_subscription_id=subscription_id,
            policy=policy,
        )

    # Optimistic until the next authoritative read / webhook.
    record = store.compare_and_set(
        db,
        organization_id=organization_id,
        expected_subscription_id=subscription_id,
        expected_plan=record.plan,
        values={"plan_status": PlanStatus.ACTIVE.value},
    )
    audit.safe_record_audit_event(
        db,
        organization_id=organization_id,
        event=audit.SUBSCRIPTION_RESUMED,
        details={"subscription_id": subscription_id},
    )
    logger.info("Subscription %s resumed for org %s", subscription_id, organization_id)
    return schemas.BillingActionResult(
        message="Your subscription has been resumed.",
        status=build_status(record, subscription),
    )


# ---------------------------------------------------------------------------
# CHANGE PLAN
# ---------------------------------------------------------------------------


def change_plan(
    db: Session,
    *,
    actor: User,
    gateway: PaymentGateway,
    plan: Plan,
    settings: BillingSettings,
) -> schemas.BillingActionResult:
    """
    Move an existing subscription to another paid plan.

    Upgrades are prorated, downgrades are not. The current billing interval
    is preserved and any pending cancellation is cleared in the same
    processor call. On success the new plan, its commission rate and one
    history row are persisted together.
    """
    plan = Plan(plan)
    policy = settings.policy
    organization_id, record = load_tenant_record(
        db, actor=actor, permission=permissions.MANAGE_SUBSCRIPTION
    )
    subscription_id = _require_subscription_id(
        record, "No active subscription. Subscribe to a plan first."
    )
    if record.plan == plan:
        raise NoOpError(f"You are already on the {plan.value.title()} plan.")
    if plan == Plan.FREE:
        raise ConfigurationError(
            "The Free plan has no processor price; cancel the subscription instead."
        )

    current_plan = record.plan
    try:
        live = gateway.retrieve_subscription(subscription_id)
        if live.status == PlanStatus.CANCELED.value:
            raise NotFoundError("Subscription not found or already canceled.")
        if not live.item_id:
            raise GatewayError("The subscription has no item to update.")

        period = BillingPeriod.ANNUAL if live.interval == "year" else BillingPeriod.MONTHLY
        price_id = settings.catalog.price_for(plan, period)
        proration = policy.proration_behavior_for(current_plan, plan)

        updated = gateway.update_subscription_item(
            subscription_id,
            item_id=live.item_id,
            new_price_id=price_id,
            proration_behavior=proration,
            cancel_at_period_end=False,
        )
    except StaleReferenceError:
        return reset_result(
            db,
            organization_id=organization_id,
            stale_subscription_id=subscription_id,
            policy=policy,
        )

    period_update = {}
    if updated.current_period_end is not None:
        period_update["current_period_end"] = updated.current_period_end
    record = store.activate_plan(
        db,
        record=record,
        plan=plan,
        subscription_id=subscription_id,
        policy=policy,
        **period_update,
    )

    audit.safe_record_audit_event(
        db,
        organization_id=organization_id,
        event=audit.PLAN_CHANGED,
        details={
            "from": current_plan.value,
            "to": plan.value,
            "proration_behavior": proration.value,
            "billing_period": period.value,
        },
    )
    logger.info(
        "Org %s changed plan %s -> %s (proration=%s)",
        organization_id,
        current_plan.value,
        plan.value,
        proration.value,
    )
    return schemas.BillingActionResult(
        message=f"Plan changed to {plan.value.title()}.",
        status=build_status(record, updated),
    )


# ---------------------------------------------------------------------------
# BILLING PORTAL
# ---------------------------------------------------------------------------


def open_billing_portal(
    db: Session,
    *,
    actor: User,
    gateway: PaymentGateway,
    settings: BillingSettings,
) -> schemas.PortalResponse:
    organization_id, record = load_tenant_record(
        db, actor=actor, permission=permissions.MANAGE_SUBSCRIPTION
    )
    customer_id = record.processor_customer_id
    if not customer_id:
        raise NotFoundError("No payment processor customer is linked to this organization.")
    try:
        url = gateway.create_billing_portal_session(
            customer_id=customer_id,
            return_url=settings.portal_return_url,
        )
    except StaleReferenceError as exc:
        raise NotFoundError(
            "The billing account no longer exists at the payment processor."
        ) from exc
    audit.safe_record_audit_event(
        db,
        organization_id=organization_id,
        event=audit.PORTAL_OPENED,
        details={"customer_id": customer_id},
    )
    return schemas.PortalResponse(url=url)


# ---------------------------------------------------------------------------
# WEBHOOK COLLABORATOR ENTRY POINTS
# ---------------------------------------------------------------------------


def confirm_activation(
    db: Session,
    *,
    organization_id: str,
    plan: Plan,
    subscription_id: str,
    current_period_end: Optional[datetime] = None,
    policy: PlanPolicy = DEFAULT_POLICY,
) -> models.BillingRecord:
    """
    Record a checkout the processor confirmed: switch the tenant onto `plan`
    and append one history row. A duplicate delivery for the same
    subscription and plan changes nothing.
    """
    plan = Plan(plan)
    if plan == Plan.FREE:
        raise ValueError("Only paid plans are activated through the processor.")
    if not subscription_id:
        raise ValueError("subscription_id is required")

    record = store.get_record(db, organization_id)
    if record.processor_subscription_id == subscription_id and record.plan == plan:
        return record
    if record.processor_subscription_id and record.processor_subscription_id != subscription_id:
        logger.warning(
            "Org %s activates subscription %s while %s is still recorded",
            organization_id,
            subscription_id,
            record.processor_subscription_id,
        )

    period_update = {}
    if current_period_end is not None:
        period_update["current_period_end"] = current_period_end
    record = store.activate_plan(
        db,
        record=record,
        plan=plan,
        subscription_id=subscription_id,
        policy=policy,
        **period_update,
    )
    audit.safe_record_audit_event(
        db,
        organization_id=organization_id,
        event=audit.PLAN_ACTIVATED,
        details={"plan": plan.value, "subscription_id": subscription_id},
    )
    return record


def apply_processor_status(
    db: Session,
    *,
    subscription_id: str,
    status: str,
    current_period_end: Optional[datetime] = None,
) -> Optional[models.BillingRecord]:
    """Store a processor-reported status verbatim (e.g. 'past_due')."""
    record = store.find_record_by_subscription(db, subscription_id)
    if record is None:
        logger.error("No organization found for subscription %s", subscription_id)
        return None
    values = {"plan_status": status}
    if current_period_end is not None:
        values["current_period_end"] = current_period_end
    return store.compare_and_set(
        db,
        organization_id=record.organization_id,
        expected_subscription_id=subscription_id,
        expected_plan=record.plan,
        values=values,
    )


def apply_subscription_deleted(
    db: Session,
    *,
    subscription_id: str,
    policy: PlanPolicy = DEFAULT_POLICY,
) -> Optional[models.BillingRecord]:
    """The processor ended the subscription: revert the tenant to free / canceled."""
    record = store.find_record_by_subscription(db, subscription_id)
    if record is None:
        logger.error("No organization found for subscription %s", subscription_id)
        return None
    store.heal(
        db,
        organization_id=record.organization_id,
        stale_subscription_id=subscription_id,
        policy=policy,
        plan_status=PlanStatus.CANCELED.value,
    )
    return store.get_record(db, record.organization_id)
