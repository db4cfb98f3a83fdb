# backend/bizdash/apps/billing/store.py
"""
Billing record store.

Persistence for the one-per-tenant BillingRecord and its append-only
SubscriptionHistory. Engine writers go through `compare_and_set`, which
only applies an update if the subscription id and plan are still what the
caller read, so a concurrent plan change or webhook delivery turns into a
ConcurrentUpdateError instead of a duplicate history row or a commission
rate that disagrees with the plan.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from . import models
from .errors import ConcurrentUpdateError, NotFoundError
from .models import Plan, PlanStatus
from .policy import DEFAULT_POLICY, PlanPolicy

logger = logging.getLogger(__name__)

_UNSET = object()


# ---------------------------------------------------------------------------
# READS
# ---------------------------------------------------------------------------


def find_record(db: Session, organization_id: str) -> Optional[models.BillingRecord]:
    return (
        db.query(models.BillingRecord)
        .filter(models.BillingRecord.organization_id == organization_id)
        .first()
    )


def get_record(db: Session, organization_id: str) -> models.BillingRecord:
    record = find_record(db, organization_id)
    if record is None:
        raise NotFoundError("Billing record not found for organization.")
    return record


def find_record_by_subscription(
    db: Session, subscription_id: str
) -> Optional[models.BillingRecord]:
    if not subscription_id:
        return None
    return (
        db.query(models.BillingRecord)
        .filter(models.BillingRecord.processor_subscription_id == subscription_id)
        .first()
    )


def list_history(db: Session, organization_id: str) -> List[models.SubscriptionHistory]:
    return (
        db.query(models.SubscriptionHistory)
        .filter(models.SubscriptionHistory.organization_id == organization_id)
        .order_by(models.SubscriptionHistory.created_at.asc(), models.SubscriptionHistory.id.asc())
        .all()
    )


def has_history(db: Session, organization_id: str) -> bool:
    return (
        db.query(models.SubscriptionHistory.id)
        .filter(models.SubscriptionHistory.organization_id == organization_id)
        .first()
        is not None
    )


# ---------------------------------------------------------------------------
# WRITES
# ---------------------------------------------------------------------------


def ensure_record(
    db: Session,
    *,
    organization_id: str,
    policy: PlanPolicy = DEFAULT_POLICY,
    commit: bool = True,
) -> models.BillingRecord:
    """Return the tenant's record, creating the free / active default if absent."""
    record = find_record(db, organization_id)
    if record is not None:
        return record
    record = models.BillingRecord(
        organization_id=organization_id,
        plan=Plan.FREE,
        plan_status=PlanStatus.ACTIVE.value,
        commission_rate=policy.commission_rate_for(Plan.FREE),
        processor_customer_id=None,
        processor_subscription_id=None,
        current_period_end=None,
    )
    db.add(record)
    if commit:
        db.commit()
    else:
        db.flush()
    return record


def _match(column, expected: Optional[Any]):
    if expected is None:
        return column.is_(None)
    return column == expected


def compare_and_set(
    db: Session,
    *,
    organization_id: str,
    expected_subscription_id: Optional[str],
    expected_plan: Plan,
    values: Dict[str, Any],
    commit: bool = True,
) -> models.BillingRecord:
    """
    Apply `values` only if the record still carries the subscription id and
    plan the caller read. Raises ConcurrentUpdateError otherwise.
    """
    values = dict(values)
    values["updated_at"] = datetime.utcnow()
    updated = (
        db.query(models.BillingRecord)
        .filter(
            models.BillingRecord.organization_id == organization_id,
            _match(models.BillingRecord.processor_subscription_id, expected_subscription_id),
            models.BillingRecord.plan == Plan(expected_plan),
        )
        .update(values, synchronize_session="fetch")
    )
    if updated != 1:
        db.rollback()
        logger.warning(
            "Billing record for org %s changed concurrently (expected sub=%s plan=%s)",
            organization_id,
            expected_subscription_id,
            Plan(expected_plan).value,
        )
        raise ConcurrentUpdateError(
            "Billing details changed while this request was processed. Please retry."
        )
    if commit:
        db.commit()
    return get_record(db, organization_id)


def set_customer_id(
    db: Session,
    *,
    organization_id: str,
    customer_id: str,
    expected_customer_id: Optional[str],
) -> models.BillingRecord:
    updated = (
        db.query(models.BillingRecord)
        .filter(
            models.BillingRecord.organization_id == organization_id,
            _match(models.BillingRecord.processor_customer_id, expected_customer_id),
        )
        .update(
            {"processor_customer_id": customer_id, "updated_at": datetime.utcnow()},
            synchronize_session="fetch",
        )
    )
    if updated != 1:
        db.rollback()
        raise ConcurrentUpdateError(
            "Billing customer changed while this request was processed. Please retry."
        )
    db.commit()
    return get_record(db, organization_id)


def append_history(
    db: Session,
    *,
    organization_id: str,
    plan: Plan,
    status: str,
    processor_subscription_id: Optional[str],
    commit: bool = True,
) -> models.SubscriptionHistory:
    row = models.SubscriptionHistory(
        organization_id=organization_id,
        plan=Plan(plan),
        status=status,
        processor_subscription_id=processor_subscription_id,
    )
    db.add(row)
    if commit:
        db.commit()
    else:
        db.flush()
    return row


def activate_plan(
    db: Session,
    *,
    record: models.BillingRecord,
    plan: Plan,
    subscription_id: str,
    policy: PlanPolicy = DEFAULT_POLICY,
    current_period_end: Any = _UNSET,
) -> models.BillingRecord:
    """
    Move the tenant onto a paid plan and append the activation to history,
    in one transaction guarded by compare-and-set.
    """
    values: Dict[str, Any] = {
        "plan": Plan(plan),
        "plan_status": PlanStatus.ACTIVE.value,
        "commission_rate": policy.commission_rate_for(plan),
        "processor_subscription_id": subscription_id,
    }
    if current_period_end is not _UNSET:
        values["current_period_end"] = current_period_end
    compare_and_set(
        db,
        organization_id=record.organization_id,
        expected_subscription_id=record.processor_subscription_id,
        expected_plan=record.plan,
        values=values,
        commit=False,
    )
    append_history(
        db,
        organization_id=record.organization_id,
        plan=plan,
        status=PlanStatus.ACTIVE.value,
        processor_subscription_id=subscription_id,
        commit=False,
    )
    db.commit()
    return get_record(db, record.organization_id)


def heal(
    db: Session,
    *,
    organization_id: str,
    stale_subscription_id: Optional[str],
    policy: PlanPolicy = DEFAULT_POLICY,
    plan_status: str = PlanStatus.ACTIVE.value,
) -> bool:
    """
    Reset the tenant to the free plan because `stale_subscription_id` no
    longer exists at the processor.

    Only clears the record if it still points at that subscription, so a
    newer subscription written meanwhile is left alone. Returns True when a
    reset happened, False when there was nothing to heal.
    """
    if not stale_subscription_id:
        return False
    updated = (
        db.query(models.BillingRecord)
        .filter(
            models.BillingRecord.organization_id == organization_id,
            models.BillingRecord.processor_subscription_id == stale_subscription_id,
        )
        .update(
            {
                "processor_subscription_id": None,
                "plan": Plan.FREE,
                "plan_status": plan_status,
                "commission_rate": policy.commission_rate_for(Plan.FREE),
                "current_period_end": None,
                "updated_at": datetime.utcnow(),
            },
            synchronize_session="fetch",
        )
    )
    db.commit()
    if updated:
        logger.warning(
            "Reset org %s to free plan: subscription %s no longer exists at the processor",
            organization_id,
            stale_subscription_id,
        )
    return bool(updated)
