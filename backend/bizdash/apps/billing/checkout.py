# backend/bizdash/apps/billing/checkout.py
"""
Checkout orchestrator.

Creates (or reuses) the processor customer and issues an embedded
checkout session. The tenant stays on its current plan: activation is
only recorded once the processor confirms it (see `lifecycle.confirm_activation`).
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from bizdash.apps.accounts import permissions
from bizdash.apps.accounts import services as account_services
from bizdash.apps.accounts.models import User
from . import audit, models, schemas, store
from .config import BillingSettings
from .errors import NoOpError, StaleReferenceError
from .gateway import PaymentGateway, TrialRequest
from .models import BillingPeriod, Plan, PlanStatus
from .reconciliation import load_tenant_record

logger = logging.getLogger(__name__)


def _resolve_customer_id(
    db: Session,
    *,
    gateway: PaymentGateway,
    record: models.BillingRecord,
    actor: User,
) -> str:
    """
    Return a processor customer id that exists remotely, creating one when
    the tenant has none or the stored one was deleted at the processor.
    """
    org = account_services.get_organization(db, record.organization_id)
    existing = record.processor_customer_id

    if existing:
        try:
            gateway.retrieve_customer(existing)
            return existing
        except StaleReferenceError:
            logger.warning(
                "Processor customer %s for org %s no longer exists; replacing it",
                existing,
                org.id,
            )

    customer_id = gateway.create_customer(
        email=actor.email,
        display_name=org.name,
        metadata={"organizationId": org.id},
    )
    store.set_customer_id(
        db,
        organization_id=org.id,
        customer_id=customer_id,
        expected_customer_id=existing,
    )
    if existing:
        audit.safe_record_audit_event(
            db,
            organization_id=org.id,
            event=audit.CUSTOMER_REPLACED,
            details={"old_customer_id": existing, "new_customer_id": customer_id},
        )
    return customer_id


def initiate_checkout(
    db: Session,
    *,
    actor: User,
    gateway: PaymentGateway,
    plan: Plan,
    billing_period: BillingPeriod,
    settings: BillingSettings,
) -> schemas.CheckoutResponse:
    plan = Plan(plan)
    billing_period = BillingPeriod(billing_period)
    organization_id, record = load_tenant_record(
        db, actor=actor, permission=permissions.MANAGE_SUBSCRIPTION
    )

    if record.plan == plan and record.plan_status == PlanStatus.ACTIVE.value:
        raise NoOpError(f"You are already subscribed to the {plan.value.title()} plan.")
    # A second checkout would open a second remote subscription.
    if record.processor_subscription_id and record.plan_status != PlanStatus.CANCELED.value:
        raise NoOpError(
            "This organization already has a subscription. Change plan instead of checking out again."
        )

    # Resolved before touching the processor so a missing price creates nothing.
    price_id = settings.catalog.price_for(plan, billing_period)

    customer_id = _resolve_customer_id(db, gateway=gateway, record=record, actor=actor)

    policy = settings.policy
    trial = None
    if policy.is_trial_eligible(store.list_history(db, organization_id)):
        trial = TrialRequest(days=policy.trial_days)

    session = gateway.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        return_url=settings.checkout_return_url,
        metadata={
            "organizationId": organization_id,
            "plan": plan.value,
            "billing": billing_period.value,
            "userId": actor.id,
        },
        trial=trial,
    )

    audit.safe_record_audit_event(
        db,
        organization_id=organization_id,
        event=audit.CHECKOUT_STARTED,
        details={
            "plan": plan.value,
            "billing_period": billing_period.value,
            "session_id": session.session_id,
            "trial_days": trial.days if trial else None,
        },
    )
    logger.info(
        "Checkout session %s issued for org %s (%s/%s, trial=%s)",
        session.session_id,
        organization_id,
        plan.value,
        billing_period.value,
        bool(trial),
    )
    return schemas.CheckoutResponse(
        client_secret=session.client_secret,
        session_id=session.session_id,
        trial_days=trial.days if trial else None,
    )
