"""
Webhook reconciliation.

Stripe pushes signed events at least once and in no particular order. A
``checkout.session.completed`` event is the only one that moves stock; the
checkout session id is the dedup key, recorded in the processed-session
ledger under the product's lock together with the decrement.
"""

from typing import Any, Callable, Dict, Optional, Tuple

from checkout_backend.errors import CheckoutError, InvalidInput
from checkout_backend.ledger import DeadLetterQueue, ProcessedSessionLedger
from checkout_backend.logs import log_exception, log_json
from checkout_backend.models import Product
from checkout_backend.payments import PaymentGateway
from checkout_backend.store import ProductStore

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"


def purchase_from_metadata(session: Dict[str, Any]) -> Tuple[str, int]:
    metadata = session.get("metadata") or {}
    product_id = metadata.get("product_id")
    if not product_id:
        raise InvalidInput("Session metadata has no product_id")
    try:
        quantity = int(metadata.get("quantity"))
    except (TypeError, ValueError):
        raise InvalidInput("Session metadata quantity is not an integer",
                           f"quantity={metadata.get('quantity')!r}")
    if quantity < 1:
        raise InvalidInput("Session metadata quantity must be positive", f"quantity={quantity}")
    return product_id, quantity


class Reconciler:
    def __init__(
        self,
        store: ProductStore,
        gateway: PaymentGateway,
        ledger: ProcessedSessionLedger,
        dead_letters: DeadLetterQueue,
    ):
        self.store = store
        self.gateway = gateway
        self.ledger = ledger
        self.dead_letters = dead_letters
        self._handlers: Dict[str, Callable[[Dict[str, Any], Dict[str, Any]], None]] = {
            CHECKOUT_COMPLETED: self._on_checkout_completed,
            PAYMENT_SUCCEEDED: self._on_payment_succeeded,
            PAYMENT_FAILED: self._on_payment_failed,
        }

    def handle(self, payload: bytes, signature: Optional[str]) -> Dict[str, bool]:
        """Authenticate and dispatch one webhook delivery.

        Raises AuthenticationError before anything is processed when the
        signature does not verify. Once verified, the delivery is always
        acknowledged.
        """
        event = self.gateway.verify_event(payload, signature)
        self.dispatch(event)
        return {"received": True}

    def dispatch(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        log_json("INFO", "Webhook event received",
                 event_id=event.get("id"), event_type=event_type)

        handler = self._handlers.get(event_type)
        if handler is None:
            log_json("INFO", f"Unhandled event type {event_type}", event_id=event.get("id"))
            return
        handler(event, obj)

    def _on_checkout_completed(self, event: Dict[str, Any], session: Dict[str, Any]) -> None:
        session_id = session.get("id")
        log_json("INFO", "Checkout completed", session_id=session_id, event_id=event.get("id"))

        try:
            product_id, quantity = purchase_from_metadata(session)
        except InvalidInput as e:
            log_json("ERROR", "Completed session has unusable metadata",
                     session_id=session_id,
                     error_code="BAD_SESSION_METADATA",
                     reason=e.error,
                     metadata=session.get("metadata"))
            return

        try:
            self.apply_completion(session_id, product_id, quantity)
        except CheckoutError as e:
            log_exception("ERROR", "Error updating product stock",
                          exc=e,
                          error_code="STOCK_RECONCILIATION_FAILED",
                          session_id=session_id,
                          product_id=product_id,
                          quantity=quantity)
            self.dead_letters.append({
                "event_id": event.get("id"),
                "session_id": session_id,
                "product_id": product_id,
                "quantity": quantity,
                "error": str(e),
                "attempts": 1,
            })

    def _on_payment_succeeded(self, event: Dict[str, Any], intent: Dict[str, Any]) -> None:
        log_json("INFO", "Payment successful",
                 payment_intent=intent.get("id"), amount=intent.get("amount"))

    def _on_payment_failed(self, event: Dict[str, Any], intent: Dict[str, Any]) -> None:
        error = intent.get("last_payment_error") or {}
        log_json("WARN", "Payment failed",
                 payment_intent=intent.get("id"), failure_message=error.get("message"))

    def apply_completion(self, session_id: str, product_id: str, quantity: int) -> bool:
        """Decrement stock once per session. Returns False for a replay."""

        def decrement(product: Product) -> Product:
            new_stock = product.stock - quantity
            if new_stock < 0:
                log_json("ERROR", "Oversold: completed purchase exceeds stock on hand",
                         error_code="OVERSOLD",
                         session_id=session_id,
                         product_id=product_id,
                         stock=product.stock,
                         quantity=quantity,
                         shortfall=-new_stock)
                new_stock = 0
            return product.model_copy(update={"stock": new_stock})

        with self.store.product_lock(product_id):
            if self.ledger.contains(session_id):
                log_json("INFO", "Session already reconciled, skipping",
                         session_id=session_id, product_id=product_id)
                return False

            self.ledger.record(session_id, product_id=product_id, quantity=quantity)
            try:
                updated = self.store.update(product_id, decrement)
            except CheckoutError:
                self.ledger.discard(session_id)
                raise

        log_json("INFO", f"Product {product_id} stock updated successfully.",
                 session_id=session_id,
                 decremented_by=quantity,
                 remaining_stock=updated.stock)
        return True

    def retry_dead_letters(self) -> int:
        """Re-apply dead-lettered completions; returns how many moved stock."""
        outcome = {"retried": 0, "applied": 0}

        def retry(entry: Dict[str, Any]) -> bool:
            outcome["retried"] += 1
            try:
                if self.apply_completion(entry["session_id"], entry["product_id"], int(entry["quantity"])):
                    outcome["applied"] += 1
                return True
            except (CheckoutError, KeyError, TypeError, ValueError) as e:
                log_json("WARN", "Dead-lettered reconciliation still failing",
                         session_id=entry.get("session_id"),
                         product_id=entry.get("product_id"),
                         reason=f"{type(e).__name__}: {e}")
                attempts = entry.get("attempts")
                entry["attempts"] = attempts + 1 if isinstance(attempts, int) else 2
                entry["error"] = f"{type(e).__name__}: {e}"
                return False

        still_failing = self.dead_letters.reprocess(retry)
        if outcome["retried"]:
            log_json("INFO", "Dead-lettered reconciliations retried",
                     still_failing=still_failing, **outcome)
        return outcome["applied"]
