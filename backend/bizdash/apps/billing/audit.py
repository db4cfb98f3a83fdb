# backend/bizdash/apps/billing/audit.py
"""
Billing audit trail.

Audit rows record what the engine did for a tenant; they are not billing
state and nothing reads them back to make decisions.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

CHECKOUT_STARTED = "CHECKOUT_STARTED"
CUSTOMER_REPLACED = "CUSTOMER_REPLACED"
CANCEL_SCHEDULED = "CANCEL_SCHEDULED"
SUBSCRIPTION_RESUMED = "SUBSCRIPTION_RESUMED"
PLAN_CHANGED = "PLAN_CHANGED"
PLAN_ACTIVATED = "PLAN_ACTIVATED"
SUBSCRIPTION_HEALED = "SUBSCRIPTION_HEALED"
PORTAL_OPENED = "PORTAL_OPENED"

EVENTS = frozenset(
    {
        CHECKOUT_STARTED,
        CUSTOMER_REPLACED,
        CANCEL_SCHEDULED,
        SUBSCRIPTION_RESUMED,
        PLAN_CHANGED,
        PLAN_ACTIVATED,
        SUBSCRIPTION_HEALED,
        PORTAL_OPENED,
    }
)


def _encode_details(details: Optional[Mapping[str, Any]]) -> Optional[str]:
    # Enums, datetimes and Decimals are stored through str().
    if not details:
        return None
    return json.dumps(dict(details), sort_keys=True, default=str)


def record_audit_event(
    db: Session,
    *,
    organization_id: Optional[str],
    event: str,
    details: Optional[Mapping[str, Any]] = None,
) -> models.BillingAuditLog:
    if event not in EVENTS:
        raise ValueError(f"Unknown billing audit event {event!r}")
    log = models.BillingAuditLog(
        organization_id=organization_id,
        event_type=event,
        details=_encode_details(details),
    )
    db.add(log)
    db.commit()
    return log


def safe_record_audit_event(
    db: Session,
    *,
    organization_id: Optional[str],
    event: str,
    details: Optional[Mapping[str, Any]] = None,
) -> Optional[models.BillingAuditLog]:
    """Like `record_audit_event`, but a database failure is logged and rolled back."""
    try:
        return record_audit_event(db, organization_id=organization_id, event=event, details=details)
    except ValueError:
        raise
    except Exception:
        db.rollback()
        logger.exception("Failed to record billing audit event %s for org %s", event, organization_id)
        return None
