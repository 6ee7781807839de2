"""
Stripe integration: hosted checkout sessions and webhook verification.

The provider is the only record of pending purchases; nothing about a
created session is stored locally. Session metadata carries the product id
and quantity so the webhook can reconcile stock later.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe

from checkout_backend.config import Settings
from checkout_backend.errors import AuthenticationError, InvalidInput, UpstreamError
from checkout_backend.logs import log_exception, log_json
from checkout_backend.models import Product

ORDER_TYPE = "single_purchase"


def configure_stripe(settings: Settings) -> None:
    """Route SDK calls through requests with a bounded timeout."""
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.stripe_timeout_seconds)


@dataclass(frozen=True)
class SessionRef:
    id: str
    url: str


class PaymentGateway:
    def __init__(self, settings: Settings, stripe_client=stripe):
        self.settings = settings
        self._stripe = stripe_client

    def create_session(self, product: Product, quantity: int) -> SessionRef:
        log_json("INFO", "Creating checkout session",
                 product_id=product.id,
                 quantity=quantity,
                 unit_amount=product.amount,
                 currency=product.currency,
                 gateway_provider="stripe")
        try:
            session = self._stripe.checkout.Session.create(
                api_key=self.settings.stripe_secret_key,
                payment_method_types=list(self.settings.payment_method_types),
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": product.currency,
                            "product_data": {"name": product.name},
                            "unit_amount": product.amount,
                        },
                        "quantity": quantity,
                    }
                ],
                success_url=f"{self.settings.success_url}?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=self.settings.cancel_url,
                metadata={
                    "product_id": product.id,
                    "product_name": product.name,
                    "quantity": str(quantity),
                    "order_type": ORDER_TYPE,
                },
                customer_creation="always",
                invoice_creation={"enabled": True},
            )
        except stripe.StripeError as e:
            log_exception("ERROR", "Payment provider rejected checkout session",
                          exc=e,
                          error_code="GATEWAY_SESSION_CREATE_FAILED",
                          product_id=product.id,
                          gateway_provider="stripe")
            raise UpstreamError("Error creating checkout session", str(e)) from e

        log_json("INFO", "Checkout session created",
                 session_id=session["id"], product_id=product.id)
        return SessionRef(id=session["id"], url=session["url"])

    def get_session_status(self, session_id: str) -> Dict[str, Any]:
        if not session_id or not session_id.strip():
            raise InvalidInput("session_id parameter is required")

        try:
            session = self._stripe.checkout.Session.retrieve(
                session_id,
                api_key=self.settings.stripe_secret_key,
                expand=["payment_intent"],
            )
        except stripe.StripeError as e:
            log_exception("ERROR", "Error retrieving checkout status",
                          exc=e,
                          error_code="GATEWAY_SESSION_RETRIEVE_FAILED",
                          session_id=session_id,
                          gateway_provider="stripe")
            raise UpstreamError("Error retrieving checkout status", str(e)) from e

        customer = session.get("customer_details") or {}
        return {
            "id": session["id"],
            "payment_status": session.get("payment_status"),
            "status": session.get("status"),
            "amount_total": session.get("amount_total"),
            "currency": session.get("currency"),
            "customer_email": customer.get("email"),
            "customer_name": customer.get("name"),
            "payment_intent": _intent_id(session.get("payment_intent")),
            "metadata": dict(session.get("metadata") or {}),
        }

    def verify_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Authenticate a webhook body against the shared secret and parse it."""
        if not signature:
            raise AuthenticationError("Webhook Error", "Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            stripe.WebhookSignature.verify_header(
                body, signature, self.settings.stripe_webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            log_json("WARN", "Webhook signature verification failed", reason=str(e))
            raise AuthenticationError("Webhook Error", str(e)) from e
        except (UnicodeDecodeError, ValueError) as e:
            log_json("WARN", "Webhook payload could not be parsed", reason=str(e))
            raise AuthenticationError("Webhook Error", "Invalid payload") from e

        if not isinstance(event, dict) or "type" not in event:
            raise AuthenticationError("Webhook Error", "Invalid payload")
        return event


def _intent_id(payment_intent: Any) -> Optional[str]:
    if payment_intent is None or isinstance(payment_intent, str):
        return payment_intent
    return payment_intent.get("id")
