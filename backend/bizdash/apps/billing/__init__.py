# backend/bizdash/apps/billing/__init__.py
"""
Billing app

Keeps a tenant's locally cached plan / commission state consistent with
the payment processor's subscription object:
- checkout (remote customer + checkout session)
- cancel / resume / change plan with proration
- status reads that self-heal when the processor no longer knows the
  stored subscription
"""

from . import errors, models, policy  # noqa: F401

__all__ = ["errors", "models", "policy"]
