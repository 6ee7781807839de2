"""
Error taxonomy for the checkout backend.

Each error knows the HTTP status it maps to; the app's exception handlers
turn them into ``{error, details?}`` bodies.
"""

from typing import Any, Dict, Optional


class CheckoutError(Exception):
    status_code = 500
    error_code = "CHECKOUT_ERROR"

    def __init__(self, error: str, details: Optional[str] = None, **extra: Any):
        super().__init__(details or error)
        self.error = error
        self.details = details
        self.extra = extra

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class InvalidInput(CheckoutError):
    status_code = 400
    error_code = "INVALID_INPUT"


class NotFound(CheckoutError):
    status_code = 404
    error_code = "NOT_FOUND"


class OutOfStock(CheckoutError):
    status_code = 400
    error_code = "OUT_OF_STOCK"


class InsufficientStock(CheckoutError):
    status_code = 400
    error_code = "INSUFFICIENT_STOCK"


class AuthenticationError(CheckoutError):
    status_code = 400
    error_code = "WEBHOOK_SIGNATURE_INVALID"


class UpstreamError(CheckoutError):
    """Payment provider call failed (including timeouts and upstream 404s)."""
    status_code = 500
    error_code = "UPSTREAM_ERROR"


class StorageError(CheckoutError):
    status_code = 500
    error_code = "STORAGE_ERROR"
