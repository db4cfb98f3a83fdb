# backend/bizdash/apps/billing/gateway.py
"""
Payment gateway client.

The only component that performs network I/O. It never touches the
database: callers decide what to persist once a remote call has succeeded.

Every method may raise:
- TransientError       network / 5xx / rate limit; the caller may resubmit
- StaleReferenceError  the referenced customer / subscription is gone
- ConfigurationError   the processor does not know a configured price id
- GatewayError         any other processor rejection (message kept verbatim)
"""

from __future__ import annotations

import abc
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional

import stripe

from .errors import ConfigurationError, GatewayError, StaleReferenceError, TransientError
from .models import ProrationBehavior

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Customer:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class Subscription:
    id: str
    status: str
    cancel_at_period_end: bool = False
    item_id: Optional[str] = None
    price_id: Optional[str] = None
    interval: Optional[str] = None  # 'month' | 'year'
    trial_end: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    @property
    def is_trialing(self) -> bool:
        return self.status == "trialing"


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    client_secret: Optional[str]


@dataclass(frozen=True)
class TrialRequest:
    """Trial window requested at checkout; unpaid trials cancel at trial end."""

    days: int
    missing_payment_method: str = "cancel"


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class PaymentGateway(abc.ABC):
    @abc.abstractmethod
    def create_customer(
        self, *, email: Optional[str], display_name: str, metadata: Mapping[str, str]
    ) -> str:
        ...

    @abc.abstractmethod
    def retrieve_customer(self, customer_id: str) -> Customer:
        ...

    @abc.abstractmethod
    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        return_url: str,
        metadata: Mapping[str, str],
        trial: Optional[TrialRequest] = None,
    ) -> CheckoutSession:
        ...

    @abc.abstractmethod
    def retrieve_subscription(self, subscription_id: str) -> Subscription:
        ...

    @abc.abstractmethod
    def update_subscription_item(
        self,
        subscription_id: str,
        *,
        item_id: str,
        new_price_id: str,
        proration_behavior: ProrationBehavior,
        cancel_at_period_end: Optional[bool] = None,
    ) -> Subscription:
        """Swap the price on `item_id`; optionally set the cancellation flag in the same call."""

    @abc.abstractmethod
    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Subscription:
        ...

    @abc.abstractmethod
    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> str:
        ...


# ---------------------------------------------------------------------------
# Stripe implementation
# ---------------------------------------------------------------------------


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return getattr(obj, key, default)


def _from_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _subscription_from_stripe(obj: Any) -> Subscription:
    items = _get(_get(obj, "items"), "data") or []
    item = items[0] if items else None
    price = _get(item, "price")
    recurring = _get(price, "recurring")
    # Newer API versions report the period on the item, older ones on the subscription.
    period_end = _get(obj, "current_period_end") or _get(item, "current_period_end")
    return Subscription(
        id=_get(obj, "id"),
        status=_get(obj, "status") or "",
        cancel_at_period_end=bool(_get(obj, "cancel_at_period_end", False)),
        item_id=_get(item, "id"),
        price_id=_get(price, "id"),
        interval=_get(recurring, "interval"),
        trial_end=_from_timestamp(_get(obj, "trial_end")),
        current_period_end=_from_timestamp(period_end),
    )


_OWN_PARAMS = (None, "", "id")
_CUSTOMER_PARAMS = _OWN_PARAMS + ("customer",)


@contextmanager
def _translate_errors(
    resource: str,
    resource_id: str = "",
    *,
    reference_params: Iterable[Optional[str]] = _OWN_PARAMS,
) -> Iterator[None]:
    """
    Map Stripe exceptions onto the billing taxonomy.

    A `resource_missing` error is only a stale reference when its `param`
    names the referenced object itself; a missing price points at our own
    configuration and must not heal a live subscription.
    """
    try:
        yield
    except stripe.InvalidRequestError as exc:
        message = str(exc.user_message or exc)
        param = getattr(exc, "param", None)
        if getattr(exc, "code", None) == "resource_missing":
            if param in tuple(reference_params):
                logger.warning("Stripe reports %s %s missing", resource, resource_id)
                raise StaleReferenceError(
                    message, resource=resource, resource_id=resource_id
                ) from exc
            if param and "price" in param:
                logger.error("Stripe does not know the configured price (%s): %s", param, message)
                raise ConfigurationError(message) from exc
        raise GatewayError(message) from exc
    except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as exc:
        logger.warning("Transient Stripe failure on %s %s: %s", resource, resource_id, exc)
        raise TransientError(str(exc.user_message or exc)) from exc
    except stripe.StripeError as exc:
        logger.error("Stripe rejected call on %s %s: %s", resource, resource_id, exc)
        raise GatewayError(str(exc.user_message or exc)) from exc


class StripeGateway(PaymentGateway):
    """PaymentGateway backed by the Stripe API."""

    def __init__(self, api_key: str, *, timeout_seconds: Optional[int] = None) -> None:
        self._api_key = api_key
        if timeout_seconds:
            stripe.default_http_client = stripe.new_default_http_client(timeout=timeout_seconds)

    def create_customer(
        self, *, email: Optional[str], display_name: str, metadata: Mapping[str, str]
    ) -> str:
        with _translate_errors("customer"):
            customer = stripe.Customer.create(
                api_key=self._api_key,
                email=email,
                name=display_name,
                metadata=dict(metadata),
            )
        return _get(customer, "id")

    def retrieve_customer(self, customer_id: str) -> Customer:
        with _translate_errors("customer", customer_id):
            customer = stripe.Customer.retrieve(customer_id, api_key=self._api_key)
        # Stripe returns deleted customers as a tombstone instead of a 404.
        if _get(customer, "deleted", False):
            raise StaleReferenceError(resource="customer", resource_id=customer_id)
        return Customer(
            id=_get(customer, "id"),
            email=_get(customer, "email"),
            name=_get(customer, "name"),
        )

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        return_url: str,
        metadata: Mapping[str, str],
        trial: Optional[TrialRequest] = None,
    ) -> CheckoutSession:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "mode": "subscription",
            "ui_mode": "embedded",
            "line_items": [{"price": price_id, "quantity": 1}],
            "return_url": return_url,
            "metadata": dict(metadata),
        }
        if trial is not None:
            params["subscription_data"] = {
                "trial_period_days": trial.days,
                "trial_settings": {
                    "end_behavior": {"missing_payment_method": trial.missing_payment_method},
                },
            }
        with _translate_errors("customer", customer_id, reference_params=_CUSTOMER_PARAMS):
            session = stripe.checkout.Session.create(api_key=self._api_key, **params)
        return CheckoutSession(
            session_id=_get(session, "id"),
            client_secret=_get(session, "client_secret"),
        )

    def retrieve_subscription(self, subscription_id: str) -> Subscription:
        with _translate_errors("subscription", subscription_id):
            sub = stripe.Subscription.retrieve(subscription_id, api_key=self._api_key)
        return _subscription_from_stripe(sub)

    def update_subscription_item(
        self,
        subscription_id: str,
        *,
        item_id: str,
        new_price_id: str,
        proration_behavior: ProrationBehavior,
        cancel_at_period_end: Optional[bool] = None,
    ) -> Subscription:
        params: Dict[str, Any] = {
            "items": [{"id": item_id, "price": new_price_id}],
            "proration_behavior": ProrationBehavior(proration_behavior).value,
        }
        if cancel_at_period_end is not None:
            params["cancel_at_period_end"] = bool(cancel_at_period_end)
        with _translate_errors("subscription", subscription_id):
            sub = stripe.Subscription.modify(subscription_id, api_key=self._api_key, **params)
        return _subscription_from_stripe(sub)

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Subscription:
        with _translate_errors("subscription", subscription_id):
            sub = stripe.Subscription.modify(
                subscription_id,
                api_key=self._api_key,
                cancel_at_period_end=bool(cancel),
            )
        return _subscription_from_stripe(sub)

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> str:
        with _translate_errors("customer", customer_id, reference_params=_CUSTOMER_PARAMS):
            session = stripe.billing_portal.Session.create(
                api_key=self._api_key,
                customer=customer_id,
                return_url=return_url,
            )
        return _get(session, "url")
