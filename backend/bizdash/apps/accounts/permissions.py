# backend/bizdash/apps/accounts/permissions.py
"""
Role-based permissions for billing.

Every active member of an organization may read its billing status and
history; changing the paid subscription is reserved to the owner.
"""

from __future__ import annotations

from typing import Dict, FrozenSet

from bizdash.apps.billing.errors import AuthorizationError
from .models import OrgRole, User


VIEW_BILLING = "view_billing"
MANAGE_SUBSCRIPTION = "manage_subscription"

ROLE_PERMISSIONS: Dict[OrgRole, FrozenSet[str]] = {
    OrgRole.OWNER: frozenset({VIEW_BILLING, MANAGE_SUBSCRIPTION}),
    OrgRole.ADMIN: frozenset({VIEW_BILLING}),
    OrgRole.MEMBER: frozenset({VIEW_BILLING}),
}


def has_permission(user: User, action: str) -> bool:
    if user is None or not getattr(user, "is_active", False):
        return False
    return action in ROLE_PERMISSIONS.get(user.role, frozenset())


def require_permission(user: User, action: str) -> User:
    """
    Return the user when they hold `action`, raise AuthorizationError otherwise.

    Callers invoke this before any database or processor I/O.
    """
    if not has_permission(user, action):
        raise AuthorizationError(f"Permission '{action}' is required for this action.")
    return user
