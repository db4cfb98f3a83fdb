# backend/bizdash/apps/billing/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from bizdash.database import Base
from bizdash.utils.identifiers import generate_uuid7


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class Plan(str, enum.Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"


class PlanStatus(str, enum.Enum):
    """
    Statuses the engine itself writes. The webhook collaborator may store
    any other processor status verbatim (e.g. 'trialing', 'incomplete').
    """

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class BillingPeriod(str, enum.Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class ProrationBehavior(str, enum.Enum):
    CREATE_PRORATIONS = "create_prorations"
    NONE = "none"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ---------------------------------------------------------------------------
# BILLING RECORD
# ---------------------------------------------------------------------------


class BillingRecord(Base):
    """
    Locally cached billing state for one tenant.

    - `plan` and `commission_rate` only change through explicit lifecycle
      operations, the healing path or the webhook collaborator.
    - `processor_subscription_id` is set iff a non-terminal remote
      subscription is believed to exist.
    - `processor_customer_id` is set once and reused for the tenant's
      lifetime (replaced only if the processor lost it).
    """

    __tablename__ = "billing_records"
    __table_args__ = (
        CheckConstraint("commission_rate >= 0", name="ck_billing_records_commission_nonneg"),
    )

    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        primary_key=True,
    )

    plan = Column(
        Enum(Plan, name="billing_plan_enum", values_callable=_enum_values),
        nullable=False,
        default=Plan.FREE,
        index=True,
    )
    plan_status = Column(
        String(32),
        nullable=False,
        default=PlanStatus.ACTIVE.value,
        doc="Last status observed from the processor, or the engine default.",
    )

    processor_customer_id = Column(String(255), nullable=True, index=True)
    processor_subscription_id = Column(String(255), nullable=True, unique=True, index=True)

    commission_rate = Column(Numeric(5, 4, asdecimal=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    organization = relationship("Organization", back_populates="billing_record")

    def __repr__(self) -> str:
        return (
            f"<BillingRecord org={self.organization_id} plan={self.plan} "
            f"status={self.plan_status} sub={self.processor_subscription_id}>"
        )


# ---------------------------------------------------------------------------
# SUBSCRIPTION HISTORY (append-only)
# ---------------------------------------------------------------------------


class SubscriptionHistory(Base):
    """
    One row per successful paid-plan activation (checkout confirmation or
    plan change), never per cancel/resume toggle.

    Rows are never updated or deleted. Any row for a tenant permanently
    consumes its trial.
    """

    __tablename__ = "subscription_history"
    __table_args__ = (
        Index("idx_subscription_history_org_created", "organization_id", "created_at"),
    )

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid7,
    )
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan = Column(
        Enum(Plan, name="billing_plan_enum", values_callable=_enum_values),
        nullable=False,
    )
    status = Column(String(32), nullable=False)
    processor_subscription_id = Column(String(255), nullable=True, index=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )

    def __repr__(self) -> str:
        return f"<SubscriptionHistory org={self.organization_id} plan={self.plan} sub={self.processor_subscription_id}>"


# ---------------------------------------------------------------------------
# AUDIT LOG
# ---------------------------------------------------------------------------


class BillingAuditLog(Base):
    __tablename__ = "billing_audit_logs"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid7,
    )
    organization_id = Column(String(36), nullable=True, index=True)
    event_type = Column(
        String(64),
        nullable=False,
        index=True,
        doc="e.g. 'CHECKOUT_STARTED', 'PLAN_CHANGED', 'SUBSCRIPTION_HEALED'",
    )
    details = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )

    def __repr__(self) -> str:
        return f"<BillingAuditLog {self.event_type} org={self.organization_id}>"
