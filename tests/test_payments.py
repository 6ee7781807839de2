"""Tests for the Stripe session gateway."""
import json
import time

import pytest
import stripe

from checkout_backend.errors import AuthenticationError, InvalidInput, UpstreamError

from conftest import WEBHOOK_SECRET, make_event, sign_payload


def test_create_session_sends_single_line_item(gateway, store, fake_stripe):
    ref = gateway.create_session(store.read("p1"), 2)

    params = fake_stripe.sessions.created[0]
    assert ref.id == "cs_test_1"
    assert ref.url.endswith("cs_test_1")
    assert params["mode"] == "payment"
    assert params["line_items"] == [{
        "price_data": {
            "currency": "usd",
            "product_data": {"name": "Ceramic Mug"},
            "unit_amount": 1000,
        },
        "quantity": 2,
    }]
    assert params["payment_method_types"] == ["card", "paypal"]


def test_create_session_metadata_and_redirects(gateway, store, fake_stripe):
    gateway.create_session(store.read("p5"), 3)

    params = fake_stripe.sessions.created[0]
    assert params["metadata"] == {
        "product_id": "p5",
        "product_name": "Linen Apron",
        "quantity": "3",
        "order_type": "single_purchase",
    }
    assert params["success_url"] == "https://shop.test/success?session_id={CHECKOUT_SESSION_ID}"
    assert params["cancel_url"] == "https://shop.test/cancel"
    assert params["customer_creation"] == "always"
    assert params["invoice_creation"] == {"enabled": True}
    assert params["api_key"] == "sk_test_dummy"


def test_create_session_provider_failure(gateway, store, fake_stripe):
    fake_stripe.sessions.fail_with = stripe.APIConnectionError("connection timed out")

    with pytest.raises(UpstreamError) as exc_info:
        gateway.create_session(store.read("p1"), 1)

    assert exc_info.value.error == "Error creating checkout session"


def test_session_status_is_normalized(gateway, store, fake_stripe):
    ref = gateway.create_session(store.read("p1"), 2)
    session = fake_stripe.sessions.sessions[ref.id]
    session.update(
        status="complete",
        payment_status="paid",
        customer_details={"email": "buyer@example.com", "name": "Ada Buyer"},
        payment_intent={"id": "pi_123", "object": "payment_intent", "status": "succeeded"},
    )

    status = gateway.get_session_status(ref.id)

    assert status == {
        "id": ref.id,
        "payment_status": "paid",
        "status": "complete",
        "amount_total": 2000,
        "currency": "usd",
        "customer_email": "buyer@example.com",
        "customer_name": "Ada Buyer",
        "payment_intent": "pi_123",
        "metadata": {
            "product_id": "p1",
            "product_name": "Ceramic Mug",
            "quantity": "2",
            "order_type": "single_purchase",
        },
    }


def test_session_status_without_customer(gateway, store):
    ref = gateway.create_session(store.read("p1"), 1)

    status = gateway.get_session_status(ref.id)

    assert status["customer_email"] is None
    assert status["payment_intent"] is None


@pytest.mark.parametrize("session_id", ["", "   "])
def test_session_status_requires_id(gateway, fake_stripe, session_id):
    fake_stripe.sessions.fail_with = AssertionError("provider must not be called")

    with pytest.raises(InvalidInput):
        gateway.get_session_status(session_id)


def test_unknown_session_is_upstream_error(gateway):
    with pytest.raises(UpstreamError):
        gateway.get_session_status("cs_missing")


def test_verify_event_accepts_valid_signature(gateway):
    payload = make_event("payment_intent.succeeded", {"id": "pi_1"})

    event = gateway.verify_event(payload, sign_payload(payload))

    assert event == json.loads(payload)


@pytest.mark.parametrize("signature", [
    None,
    "",
    "garbage",
    "t=1,v1=deadbeef",
])
def test_verify_event_rejects_bad_signatures(gateway, signature):
    payload = make_event("payment_intent.succeeded", {"id": "pi_1"})

    with pytest.raises(AuthenticationError):
        gateway.verify_event(payload, signature)


def test_verify_event_rejects_wrong_secret(gateway):
    payload = make_event("payment_intent.succeeded", {"id": "pi_1"})

    with pytest.raises(AuthenticationError):
        gateway.verify_event(payload, sign_payload(payload, secret="whsec_other"))


def test_verify_event_rejects_stale_timestamp(gateway):
    payload = make_event("payment_intent.succeeded", {"id": "pi_1"})
    stale = int(time.time()) - 3600

    with pytest.raises(AuthenticationError):
        gateway.verify_event(payload, sign_payload(payload, timestamp=stale))


def test_verify_event_rejects_replayed_old_delivery(gateway):
    payload = make_event("payment_intent.succeeded", {"id": "pi_1"})

    with pytest.raises(AuthenticationError):
        gateway.verify_event(payload, sign_payload(payload, timestamp=1000000000))


def test_verify_event_rejects_tampered_body(gateway):
    payload = make_event("payment_intent.succeeded", {"id": "pi_1"})
    signature = sign_payload(payload, WEBHOOK_SECRET)

    with pytest.raises(AuthenticationError):
        gateway.verify_event(payload.replace(b"pi_1", b"pi_2"), signature)


def test_verify_event_rejects_signed_non_json(gateway):
    payload = b"not json at all"

    with pytest.raises(AuthenticationError):
        gateway.verify_event(payload, sign_payload(payload))
