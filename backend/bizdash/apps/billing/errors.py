# backend/bizdash/apps/billing/errors.py
"""
Billing error taxonomy.

Every error carries a stable `code` so the web tier can render a tagged
error without parsing messages.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for every error raised by the billing engine."""

    code = "billing_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class AuthorizationError(BillingError):
    """Raised when the caller lacks the permission for a mutating operation."""

    code = "forbidden"


class NotFoundError(BillingError):
    """Raised when the organization or the required remote reference is missing."""

    code = "not_found"


class ConfigurationError(BillingError):
    """Raised when no price is configured for a plan / billing period pair."""

    code = "configuration"


class NoOpError(BillingError):
    """Raised when the requested transition equals the current state."""

    code = "no_op"


class ConcurrentUpdateError(BillingError):
    """Raised when the billing record changed between read and write."""

    code = "conflict"


# ---------------------------------------------------------------------------
# Gateway errors
# ---------------------------------------------------------------------------


class GatewayError(BillingError):
    """Any processor failure that is neither transient nor a stale reference."""

    code = "processor"


class TransientError(GatewayError):
    """Network / 5xx / rate-limit failure. The caller may resubmit."""

    code = "transient"


class StaleReferenceError(GatewayError):
    """The referenced customer or subscription no longer exists remotely."""

    code = "stale_reference"

    def __init__(self, message: str = "", *, resource: str = "", resource_id: str = "") -> None:
        super().__init__(message or f"{resource or 'resource'} {resource_id} no longer exists")
        self.resource = resource
        self.resource_id = resource_id
