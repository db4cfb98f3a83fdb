from __future__ import annotations

from datetime import datetime, timezone

import pytest
import stripe

from bizdash.apps.billing.errors import (
    ConfigurationError,
    GatewayError,
    StaleReferenceError,
    TransientError,
)
from bizdash.apps.billing.gateway import StripeGateway, TrialRequest
from bizdash.apps.billing.models import ProrationBehavior


PERIOD_END = 1924905600  # 2031-01-01T00:00:00Z


def _stripe_subscription(**overrides):
    sub = {
        "id": "sub_1",
        "status": "active",
        "cancel_at_period_end": False,
        "trial_end": None,
        "items": {
            "data": [
                {
                    "id": "si_1",
                    "current_period_end": PERIOD_END,
                    "price": {"id": "price_pro_y", "recurring": {"interval": "year"}},
                }
            ]
        },
    }
    sub.update(overrides)
    return sub


@pytest.fixture()
def stripe_gateway():
    return StripeGateway("sk_test_dummy")


def test_retrieve_subscription_maps_item_fields(monkeypatch, stripe_gateway):
    monkeypatch.setattr(
        stripe.Subscription, "retrieve", lambda sub_id, **kwargs: _stripe_subscription(id=sub_id)
    )

    sub = stripe_gateway.retrieve_subscription("sub_1")

    assert sub.id == "sub_1"
    assert sub.item_id == "si_1"
    assert sub.price_id == "price_pro_y"
    assert sub.interval == "year"
    assert sub.current_period_end == datetime(2031, 1, 1, tzinfo=timezone.utc)
    assert sub.is_trialing is False


def test_missing_subscription_is_a_stale_reference(monkeypatch, stripe_gateway):
    def _missing(sub_id, **kwargs):
        raise stripe.InvalidRequestError(
            f"No such subscription: '{sub_id}'", "id", code="resource_missing"
        )

    monkeypatch.setattr(stripe.Subscription, "retrieve", _missing)

    with pytest.raises(StaleReferenceError) as excinfo:
        stripe_gateway.retrieve_subscription("sub_gone")
    assert excinfo.value.resource == "subscription"
    assert excinfo.value.resource_id == "sub_gone"


def test_other_invalid_request_is_a_gateway_error(monkeypatch, stripe_gateway):
    def _invalid(sub_id, **kwargs):
        raise stripe.InvalidRequestError("Invalid price", "items", code="parameter_invalid")

    monkeypatch.setattr(stripe.Subscription, "modify", _invalid)

    with pytest.raises(GatewayError) as excinfo:
        stripe_gateway.set_cancel_at_period_end("sub_1", True)
    assert not isinstance(excinfo.value, (StaleReferenceError, TransientError))
    assert "Invalid price" in excinfo.value.message


@pytest.mark.parametrize(
    "error",
    [
        stripe.APIConnectionError("connection reset"),
        stripe.RateLimitError("slow down"),
        stripe.APIError("server error"),
    ],
)
def test_network_and_server_failures_are_transient(monkeypatch, stripe_gateway, error):
    def _fail(*args, **kwargs):
        raise error

    monkeypatch.setattr(stripe.Subscription, "retrieve", _fail)

    with pytest.raises(TransientError):
        stripe_gateway.retrieve_subscription("sub_1")


def test_authentication_failure_is_a_gateway_error(monkeypatch, stripe_gateway):
    def _fail(*args, **kwargs):
        raise stripe.AuthenticationError("Invalid API key")

    monkeypatch.setattr(stripe.Customer, "create", _fail)

    with pytest.raises(GatewayError):
        stripe_gateway.create_customer(email="a@b.test", display_name="A", metadata={})


def test_deleted_customer_is_a_stale_reference(monkeypatch, stripe_gateway):
    monkeypatch.setattr(
        stripe.Customer, "retrieve", lambda cus_id, **kwargs: {"id": cus_id, "deleted": True}
    )

    with pytest.raises(StaleReferenceError):
        stripe_gateway.retrieve_customer("cus_1")


def test_checkout_session_requests_trial_that_cancels_without_payment(monkeypatch, stripe_gateway):
    captured = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_1", "client_secret": "cs_1_secret"}

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)

    session = stripe_gateway.create_checkout_session(
        customer_id="cus_1",
        price_id="price_pro_m",
        return_url="https://app.example.test/return",
        metadata={"organizationId": "org_1"},
        trial=TrialRequest(days=14),
    )

    assert session.session_id == "cs_1"
    assert session.client_secret == "cs_1_secret"
    assert captured["mode"] == "subscription"
    assert captured["ui_mode"] == "embedded"
    assert captured["line_items"] == [{"price": "price_pro_m", "quantity": 1}]
    assert captured["subscription_data"] == {
        "trial_period_days": 14,
        "trial_settings": {"end_behavior": {"missing_payment_method": "cancel"}},
    }


def test_checkout_session_without_trial_omits_subscription_data(monkeypatch, stripe_gateway):
    captured = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_2", "client_secret": None}

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)

    stripe_gateway.create_checkout_session(
        customer_id="cus_1",
        price_id="price_pro_m",
        return_url="https://app.example.test/return",
        metadata={},
    )

    assert "subscription_data" not in captured


def test_update_subscription_item_sends_price_swap(monkeypatch, stripe_gateway):
    captured = {}

    def _modify(sub_id, **kwargs):
        captured["id"] = sub_id
        captured.update(kwargs)
        return _stripe_subscription(id=sub_id)

    monkeypatch.setattr(stripe.Subscription, "modify", _modify)

    stripe_gateway.update_subscription_item(
        "sub_1",
        item_id="si_1",
        new_price_id="price_pro_y",
        proration_behavior=ProrationBehavior.CREATE_PRORATIONS,
        cancel_at_period_end=False,
    )

    assert captured["id"] == "sub_1"
    assert captured["items"] == [{"id": "si_1", "price": "price_pro_y"}]
    assert captured["proration_behavior"] == "create_prorations"
    assert captured["cancel_at_period_end"] is False


def test_billing_portal_returns_url(monkeypatch, stripe_gateway):
    monkeypatch.setattr(
        stripe.billing_portal.Session,
        "create",
        lambda **kwargs: {"url": f"https://billing.stripe.test/{kwargs['customer']}"},
    )

    url = stripe_gateway.create_billing_portal_session(
        customer_id="cus_1", return_url="https://app.example.test"
    )

    assert url == "https://billing.stripe.test/cus_1"


def _missing(message, param):
    def _raise(*args, **kwargs):
        raise stripe.InvalidRequestError(message, param, code="resource_missing")

    return _raise


def test_unknown_price_on_item_swap_is_a_configuration_error(monkeypatch, stripe_gateway):
    monkeypatch.setattr(
        stripe.Subscription,
        "modify",
        _missing("No such price: 'price_pro_m'", "items[0][price]"),
    )

    with pytest.raises(ConfigurationError):
        stripe_gateway.update_subscription_item(
            "sub_1",
            item_id="si_1",
            new_price_id="price_pro_m",
            proration_behavior=ProrationBehavior.CREATE_PRORATIONS,
        )


def test_unknown_price_at_checkout_is_a_configuration_error(monkeypatch, stripe_gateway):
    monkeypatch.setattr(
        stripe.checkout.Session,
        "create",
        _missing("No such price: 'price_gone'", "line_items[0][price]"),
    )

    with pytest.raises(ConfigurationError):
        stripe_gateway.create_checkout_session(
            customer_id="cus_1",
            price_id="price_gone",
            return_url="https://app.example.test/return",
            metadata={},
        )


def test_missing_customer_at_checkout_is_a_stale_reference(monkeypatch, stripe_gateway):
    monkeypatch.setattr(
        stripe.checkout.Session,
        "create",
        _missing("No such customer: 'cus_gone'", "customer"),
    )

    with pytest.raises(StaleReferenceError) as excinfo:
        stripe_gateway.create_checkout_session(
            customer_id="cus_gone",
            price_id="price_pro_m",
            return_url="https://app.example.test/return",
            metadata={},
        )
    assert excinfo.value.resource == "customer"


def test_other_missing_object_is_a_plain_gateway_error(monkeypatch, stripe_gateway):
    monkeypatch.setattr(
        stripe.Subscription,
        "modify",
        _missing("No such payment method: 'pm_1'", "default_payment_method"),
    )

    with pytest.raises(GatewayError) as excinfo:
        stripe_gateway.set_cancel_at_period_end("sub_1", False)
    assert not isinstance(excinfo.value, StaleReferenceError)
