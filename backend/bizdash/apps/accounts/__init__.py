# backend/bizdash/apps/accounts/__init__.py
"""
Accounts app

Responsible for:
- Tenant organizations (the billed entity)
- User accounts and their role inside an organization
- The role -> permission matrix used by mutating billing operations
- Resolving the owning organization for an authenticated user

Other apps (billing, etc.) should depend on these models for anything
related to "who is allowed to do what, for which tenant".
"""

from . import models, permissions, services  # noqa: F401

__all__ = ["models", "permissions", "services"]
