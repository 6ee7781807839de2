"""Pytest fixtures: temp product files, settings and an in-memory Stripe double."""

import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe
from fastapi.testclient import TestClient

from checkout_backend.app import create_app
from checkout_backend.config import Settings
from checkout_backend.ledger import DeadLetterQueue, ProcessedSessionLedger
from checkout_backend.payments import PaymentGateway
from checkout_backend.reconciliation import Reconciler
from checkout_backend.store import ProductStore

WEBHOOK_SECRET = "whsec_test_secret"

SEED_PRODUCTS = {
    "p1": {"id": "p1", "name": "Ceramic Mug", "amount": 1000, "currency": "usd", "stock": 3},
    "p5": {"id": "p5", "name": "Linen Apron", "amount": 2500, "currency": "eur", "stock": 5},
    "p0": {"id": "p0", "name": "Sold Out Tote", "amount": 1500, "currency": "usd", "stock": 0},
}


class FakeSessionResource:
    """Stands in for ``stripe.checkout.Session``."""

    def __init__(self):
        self.created = []
        self.sessions = {}
        self.fail_with = None

    def create(self, **params):
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append(params)
        session_id = f"cs_test_{len(self.created)}"
        line_item = params["line_items"][0]
        session = {
            "id": session_id,
            "url": f"https://checkout.stripe.test/c/pay/{session_id}",
            "status": "open",
            "payment_status": "unpaid",
            "amount_total": line_item["price_data"]["unit_amount"] * line_item["quantity"],
            "currency": line_item["price_data"]["currency"],
            "customer_details": None,
            "payment_intent": None,
            "metadata": dict(params["metadata"]),
        }
        self.sessions[session_id] = session
        return session

    def retrieve(self, session_id, **params):
        if self.fail_with is not None:
            raise self.fail_with
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(f"No such checkout.session: '{session_id}'", "id")
        return self.sessions[session_id]


class FakeStripe:
    def __init__(self):
        self.checkout = SimpleNamespace(Session=FakeSessionResource())

    @property
    def sessions(self):
        return self.checkout.Session


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = "evt_test_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode("utf-8")


def completed_session_event(session_id: str, product_id: str, quantity, event_id: str = "evt_test_1") -> bytes:
    return make_event("checkout.session.completed", {
        "id": session_id,
        "object": "checkout.session",
        "status": "complete",
        "payment_status": "paid",
        "metadata": {
            "product_id": product_id,
            "product_name": "whatever",
            "quantity": str(quantity),
            "order_type": "single_purchase",
        },
    }, event_id=event_id)


def read_product_file(settings: Settings, product_id: str) -> dict:
    return json.loads((settings.products_dir / f"{product_id}.json").read_text(encoding="utf-8"))


@pytest.fixture
def settings(tmp_path) -> Settings:
    products_dir = tmp_path / "products"
    products_dir.mkdir()
    for product_id, record in SEED_PRODUCTS.items():
        (products_dir / f"{product_id}.json").write_text(json.dumps(record, indent=2), encoding="utf-8")

    return Settings(
        port=3001,
        success_url="https://shop.test/success",
        cancel_url="https://shop.test/cancel",
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret=WEBHOOK_SECRET,
        products_dir=products_dir,
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def store(settings) -> ProductStore:
    return ProductStore(settings.products_dir)


@pytest.fixture
def fake_stripe() -> FakeStripe:
    return FakeStripe()


@pytest.fixture
def gateway(settings, fake_stripe) -> PaymentGateway:
    return PaymentGateway(settings, stripe_client=fake_stripe)


@pytest.fixture
def reconciler(settings, store, gateway) -> Reconciler:
    return Reconciler(
        store,
        gateway,
        ProcessedSessionLedger(settings.ledger_path),
        DeadLetterQueue(settings.dead_letter_path),
    )


@pytest.fixture
def app(settings, fake_stripe):
    return create_app(settings, stripe_client=fake_stripe)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
