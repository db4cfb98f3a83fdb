# backend/bizdash/apps/billing/reconciliation.py
"""
Reconciliation guard.

Wraps every status read and is called by the lifecycle operations when the
gateway reports a stale reference. Healing resets the tenant to the free
plan; it is idempotent because a healed record no longer carries a
subscription id.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from bizdash.apps.accounts import permissions
from bizdash.apps.accounts import services as account_services
from bizdash.apps.accounts.models import User
from . import audit, models, schemas, store
from .errors import StaleReferenceError
from .gateway import PaymentGateway, Subscription
from .models import BillingPeriod
from .policy import DEFAULT_POLICY, PlanPolicy

logger = logging.getLogger(__name__)

RESET_TO_FREE_MESSAGE = (
    "The subscription no longer exists at the payment processor. "
    "Your account has been reset to the Free plan."
)


def load_tenant_record(
    db: Session,
    *,
    actor: User,
    permission: Optional[str] = None,
) -> Tuple[str, models.BillingRecord]:
    """
    Authorize the actor, resolve their organization and load its record.

    Authorization runs first so a refused caller triggers no I/O at all.
    """
    if permission is not None:
        permissions.require_permission(actor, permission)
    organization_id = account_services.resolve_organization_id(db, actor)
    return organization_id, store.get_record(db, organization_id)


def build_status(
    record: models.BillingRecord,
    subscription: Optional[Subscription] = None,
) -> schemas.BillingStatusRead:
    """
    Render the stored record, merging in what only the processor knows
    (cancellation flag, trial window, billing interval). The stored plan and
    commission rate are never overridden by the remote view.
    """
    status = schemas.BillingStatusRead(
        organization_id=record.organization_id,
        plan=record.plan,
        plan_status=record.plan_status,
        subscription_end_date=record.current_period_end,
        processor_subscription_id=record.processor_subscription_id,
        commission_rate=record.commission_rate,
    )
    if subscription is None:
        return status
    return status.model_copy(
        update={
            "cancel_at_period_end": subscription.cancel_at_period_end,
            "is_trialing": subscription.is_trialing,
            "trial_end": subscription.trial_end,
            "billing_period": (
                BillingPeriod.ANNUAL if subscription.interval == "year" else BillingPeriod.MONTHLY
            ),
        }
    )


def heal_tenant(
    db: Session,
    *,
    organization_id: str,
    stale_subscription_id: Optional[str],
    policy: PlanPolicy = DEFAULT_POLICY,
) -> schemas.BillingStatusRead:
    """Reset the tenant to the free plan and return the consistent status."""
    healed = store.heal(
        db,
        organization_id=organization_id,
        stale_subscription_id=stale_subscription_id,
        policy=policy,
    )
    if healed:
        audit.safe_record_audit_event(
            db,
            organization_id=organization_id,
            event=audit.SUBSCRIPTION_HEALED,
            details={"stale_subscription_id": stale_subscription_id},
        )
    return build_status(store.get_record(db, organization_id))


def reset_result(
    db: Session,
    *,
    organization_id: str,
    stale_subscription_id: Optional[str],
    policy: PlanPolicy = DEFAULT_POLICY,
) -> schemas.BillingActionResult:
    status = heal_tenant(
        db,
        organization_id=organization_id,
        stale_subscription_id=stale_subscription_id,
        policy=policy,
    )
    return schemas.BillingActionResult(
        outcome=schemas.ActionOutcome.RESET_TO_FREE,
        message=RESET_TO_FREE_MESSAGE,
        status=status,
    )


def get_status(
    db: Session,
    *,
    actor: User,
    gateway: PaymentGateway,
    policy: PlanPolicy = DEFAULT_POLICY,
) -> schemas.BillingStatusRead:
    """
    Current billing status for the actor's organization.

    Without a subscription id the local record is authoritative. Otherwise
    the live subscription is read; if the processor no longer has it the
    record is healed and the free-plan status is returned. Transient
    gateway failures propagate unchanged.
    """
    organization_id, record = load_tenant_record(
        db, actor=actor, permission=permissions.VIEW_BILLING
    )
    subscription_id = record.processor_subscription_id
    if not subscription_id:
        return build_status(record)

    try:
        subscription = gateway.retrieve_subscription(subscription_id)
    except StaleReferenceError:
        logger.warning(
            "Subscription %s for org %s is stale; healing", subscription_id, organization_id
        )
        return heal_tenant(
            db,
            organization_id=organization_id,
            stale_subscription_id=subscription_id,
            policy=policy,
        )
    return build_status(record, subscription)
