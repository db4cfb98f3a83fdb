# backend/bizdash/apps/accounts/services.py

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from bizdash.apps.billing import store as billing_store
from bizdash.apps.billing.errors import NotFoundError
from bizdash.apps.billing.policy import DEFAULT_POLICY, PlanPolicy
from . import models

logger = logging.getLogger(__name__)


def _normalise_email(value: str) -> str:
    return (value or "").strip().lower()


def get_user_by_id(db: Session, user_id: str) -> Optional[models.User]:
    if user_id is None:
        return None
    return db.query(models.User).filter(models.User.id == str(user_id).strip()).first()


def create_organization(
    db: Session,
    *,
    name: str,
    contact_email: Optional[str] = None,
    policy: PlanPolicy = DEFAULT_POLICY,
) -> models.Organization:
    """
    Create a tenant organization together with its default billing record
    (free plan, active, default commission rate).
    """
    org = models.Organization(
        name=name.strip(),
        contact_email=_normalise_email(contact_email) if contact_email else None,
    )
    db.add(org)
    db.flush()
    billing_store.ensure_record(db, organization_id=org.id, policy=policy, commit=False)
    db.commit()
    logger.info("Created organization %s with default free billing record", org.id)
    return org


def create_user(
    db: Session,
    *,
    email: str,
    organization_id: Optional[str],
    role: models.OrgRole = models.OrgRole.MEMBER,
    full_name: Optional[str] = None,
) -> models.User:
    user = models.User(
        email=_normalise_email(email),
        organization_id=organization_id,
        role=role,
        full_name=full_name,
    )
    db.add(user)
    db.commit()
    return user


def resolve_organization_id(db: Session, user: models.User) -> str:
    """
    Tenant resolver: return the id of the organization owning `user`.

    Raises NotFoundError when the user has no organization (or it no longer
    exists), before any processor call is made.
    """
    organization_id = getattr(user, "organization_id", None)
    if not organization_id:
        raise NotFoundError("Organization not found.")
    exists = (
        db.query(models.Organization.id)
        .filter(models.Organization.id == organization_id)
        .first()
    )
    if not exists:
        raise NotFoundError("Organization not found.")
    return organization_id


def get_organization(db: Session, organization_id: str) -> models.Organization:
    org = (
        db.query(models.Organization)
        .filter(models.Organization.id == organization_id)
        .first()
    )
    if not org:
        raise NotFoundError("Organization not found.")
    return org
