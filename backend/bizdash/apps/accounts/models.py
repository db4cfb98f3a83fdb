# backend/bizdash/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from bizdash.database import Base
from bizdash.utils.identifiers import generate_uuid7


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class OrgRole(str, enum.Enum):
    """Role of a user inside their organization. Owner > Admin > Member."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


# ---------------------------------------------------------------------------
# ORGANIZATION
# ---------------------------------------------------------------------------


class Organization(Base):
    """
    Tenant organization.

    Everything billable (quotes, invoices, the subscription itself) is
    scoped to an organization. Each organization owns exactly one
    BillingRecord, created together with the organization.
    """

    __tablename__ = "organizations"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid7,
    )
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

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

    users = relationship(
        "User",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    billing_record = relationship(
        "BillingRecord",
        back_populates="organization",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# USER
# ---------------------------------------------------------------------------


class User(Base):
    """
    Dashboard user. A user belongs to at most one organization; users
    without one (mid-signup) cannot touch billing.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
    )

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid7,
    )
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)

    role = Column(
        Enum(OrgRole, name="org_role_enum", values_callable=lambda roles: [r.value for r in roles]),
        nullable=False,
        default=OrgRole.MEMBER,
        index=True,
    )

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )

    organization = relationship("Organization", back_populates="users")

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"
