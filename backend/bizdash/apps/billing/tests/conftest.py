from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from bizdash.apps.accounts import services as account_services
from bizdash.apps.accounts.models import OrgRole
from bizdash.apps.billing import lifecycle
from bizdash.apps.billing.config import BillingSettings, PriceCatalog
from bizdash.apps.billing.errors import StaleReferenceError, TransientError
from bizdash.apps.billing.gateway import (
    CheckoutSession,
    Customer,
    PaymentGateway,
    Subscription,
)
from bizdash.apps.billing.models import BillingPeriod, Plan
from bizdash.apps.billing.policy import PlanPolicy


PRICES = {
    (Plan.STARTER, BillingPeriod.MONTHLY): "price_starter_m",
    (Plan.STARTER, BillingPeriod.ANNUAL): "price_starter_y",
    (Plan.PRO, BillingPeriod.MONTHLY): "price_pro_m",
    (Plan.PRO, BillingPeriod.ANNUAL): "price_pro_y",
}

_INTERVAL_BY_PRICE = {
    "price_starter_m": "month",
    "price_pro_m": "month",
    "price_starter_y": "year",
    "price_pro_y": "year",
}


class FakeGateway(PaymentGateway):
    """In-memory processor that records every call made to it."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, dict]] = []
        self.customers: Dict[str, Customer] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.transient_methods: set = set()
        self._ids = itertools.count(1)

    # -- helpers ----------------------------------------------------------

    def _call(self, name: str, **kwargs) -> None:
        self.calls.append((name, kwargs))
        if name in self.transient_methods:
            raise TransientError(f"{name} timed out")

    @property
    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    @property
    def mutating_calls(self) -> List[str]:
        return [name for name in self.call_names if not name.startswith("retrieve_")]

    def add_customer(self, customer_id: str, email: str = "owner@example.com") -> None:
        self.customers[customer_id] = Customer(id=customer_id, email=email)

    def add_subscription(
        self,
        subscription_id: str,
        *,
        price_id: str = "price_pro_m",
        status: str = "active",
        cancel_at_period_end: bool = False,
        trial_end: Optional[datetime] = None,
    ) -> Subscription:
        sub = Subscription(
            id=subscription_id,
            status=status,
            cancel_at_period_end=cancel_at_period_end,
            item_id=f"si_{subscription_id}",
            price_id=price_id,
            interval=_INTERVAL_BY_PRICE.get(price_id, "month"),
            trial_end=trial_end,
            current_period_end=datetime(2030, 1, 31, tzinfo=timezone.utc),
        )
        self.subscriptions[subscription_id] = sub
        return sub

    def _live(self, resource: str, store: dict, key: str):
        if key not in store:
            raise StaleReferenceError(resource=resource, resource_id=key)
        return store[key]

    # -- PaymentGateway ---------------------------------------------------

    def create_customer(self, *, email, display_name, metadata):
        self._call("create_customer", email=email, display_name=display_name, metadata=dict(metadata))
        customer_id = f"cus_{next(self._ids)}"
        self.customers[customer_id] = Customer(id=customer_id, email=email, name=display_name)
        return customer_id

    def retrieve_customer(self, customer_id):
        self._call("retrieve_customer", customer_id=customer_id)
        return self._live("customer", self.customers, customer_id)

    def create_checkout_session(self, *, customer_id, price_id, return_url, metadata, trial=None):
        self._call(
            "create_checkout_session",
            customer_id=customer_id,
            price_id=price_id,
            return_url=return_url,
            metadata=dict(metadata),
            trial=trial,
        )
        self._live("customer", self.customers, customer_id)
        session_id = f"cs_{next(self._ids)}"
        return CheckoutSession(session_id=session_id, client_secret=f"{session_id}_secret")

    def retrieve_subscription(self, subscription_id):
        self._call("retrieve_subscription", subscription_id=subscription_id)
        return self._live("subscription", self.subscriptions, subscription_id)

    def update_subscription_item(
        self,
        subscription_id,
        *,
        item_id,
        new_price_id,
        proration_behavior,
        cancel_at_period_end=None,
    ):
        self._call(
            "update_subscription_item",
            subscription_id=subscription_id,
            item_id=item_id,
            new_price_id=new_price_id,
            proration_behavior=proration_behavior,
            cancel_at_period_end=cancel_at_period_end,
        )
        sub = self._live("subscription", self.subscriptions, subscription_id)
        changes = {"price_id": new_price_id}
        if cancel_at_period_end is not None:
            changes["cancel_at_period_end"] = cancel_at_period_end
        sub = replace(sub, **changes)
        self.subscriptions[subscription_id] = sub
        return sub

    def set_cancel_at_period_end(self, subscription_id, cancel):
        self._call("set_cancel_at_period_end", subscription_id=subscription_id, cancel=cancel)
        sub = self._live("subscription", self.subscriptions, subscription_id)
        sub = replace(sub, cancel_at_period_end=cancel)
        self.subscriptions[subscription_id] = sub
        return sub

    def create_billing_portal_session(self, *, customer_id, return_url):
        self._call("create_billing_portal_session", customer_id=customer_id, return_url=return_url)
        self._live("customer", self.customers, customer_id)
        return f"https://billing.example.test/session/{customer_id}"


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def settings() -> BillingSettings:
    return BillingSettings(
        stripe_secret_key="sk_test_dummy",
        app_url="https://app.example.test",
        catalog=PriceCatalog(prices=dict(PRICES)),
        policy=PlanPolicy(),
    )


@pytest.fixture()
def org(db_session):
    return account_services.create_organization(
        db_session, name="Atelier Dupont", contact_email="Contact@Dupont.test"
    )


@pytest.fixture()
def owner(db_session, org):
    return account_services.create_user(
        db_session,
        email="owner@dupont.test",
        organization_id=org.id,
        role=OrgRole.OWNER,
        full_name="Claire Dupont",
    )


@pytest.fixture()
def member(db_session, org):
    return account_services.create_user(
        db_session,
        email="member@dupont.test",
        organization_id=org.id,
        role=OrgRole.MEMBER,
    )


@pytest.fixture()
def subscribe(db_session, gateway, org, settings):
    """Put the organization on a paid plan as the webhook would after checkout."""

    def _subscribe(
        plan: Plan = Plan.PRO,
        *,
        subscription_id: str = "sub_live",
        price_id: Optional[str] = None,
        cancel_at_period_end: bool = False,
        status: str = "active",
    ):
        gateway.add_customer("cus_existing")
        record = account_services.get_organization(db_session, org.id).billing_record
        record.processor_customer_id = "cus_existing"
        db_session.commit()
        gateway.add_subscription(
            subscription_id,
            price_id=price_id or PRICES[(plan, BillingPeriod.MONTHLY)],
            cancel_at_period_end=cancel_at_period_end,
            status=status,
            trial_end=(datetime.now(timezone.utc) + timedelta(days=14)) if status == "trialing" else None,
        )
        return lifecycle.confirm_activation(
            db_session,
            organization_id=org.id,
            plan=plan,
            subscription_id=subscription_id,
            policy=settings.policy,
        )

    return _subscribe
