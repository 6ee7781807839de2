"""
CHECKOUT BACKEND
================

Sells one product per Stripe-hosted checkout session and reconciles stock
when Stripe confirms the payment.

Flow:
1. POST /create-checkout-session validates the request, checks stock
   (advisory, nothing reserved) and opens a Stripe session
2. Stripe redirects the buyer to SUCCESS_URL / CANCEL_URL
3. POST /webhook receives checkout.session.completed and decrements stock
   exactly once per session

Port: APP_PORT (3001)
"""

from contextlib import asynccontextmanager
from typing import Optional

import stripe
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from checkout_backend.availability import check_availability, describe_product
from checkout_backend.config import Settings
from checkout_backend.errors import CheckoutError
from checkout_backend.ledger import DeadLetterQueue, ProcessedSessionLedger
from checkout_backend.logs import SERVICE_VERSION, log_exception, log_json
from checkout_backend.models import CheckoutRequest
from checkout_backend.payments import PaymentGateway, configure_stripe
from checkout_backend.reconciliation import Reconciler
from checkout_backend.store import ProductStore


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"

    # First failing field wins, product_id is declared before quantity
    err = errors[0]
    ctx_error = (err.get("ctx") or {}).get("error")
    if ctx_error is not None:
        return str(ctx_error)
    if err.get("type") == "json_invalid":
        return "Request body is not valid JSON"
    return err.get("msg", "Invalid request")


def create_app(settings: Optional[Settings] = None, stripe_client=stripe) -> FastAPI:
    settings = settings or Settings.from_env()
    if stripe_client is stripe:
        configure_stripe(settings)

    store = ProductStore(settings.products_dir)
    gateway = PaymentGateway(settings, stripe_client=stripe_client)
    reconciler = Reconciler(
        store,
        gateway,
        ProcessedSessionLedger(settings.ledger_path),
        DeadLetterQueue(settings.dead_letter_path),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_json("INFO", "Checkout backend starting",
                 port=settings.port,
                 products_dir=str(settings.products_dir),
                 data_dir=str(settings.data_dir))
        try:
            await run_in_threadpool(reconciler.retry_dead_letters)
        except (CheckoutError, OSError, ValueError) as e:
            log_exception("ERROR", "Retrying dead-lettered reconciliations failed", exc=e)
        yield

    app = FastAPI(title="Checkout Backend", version=SERVICE_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.store = store
    app.state.gateway = gateway
    app.state.reconciler = reconciler

    # =========================================================================
    # ERROR TRANSLATION
    # =========================================================================

    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        if exc.status_code >= 500:
            # Details stay in the logs
            return JSONResponse(status_code=exc.status_code, content={"error": exc.error})
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        message = _validation_message(exc)
        log_json("WARN", "Rejected invalid request",
                 path=request.url.path, error_code="INVALID_INPUT", reason=message)
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log_exception("ERROR", "Unhandled error while serving request",
                      exc=exc, path=request.url.path, method=request.method)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    @app.get("/health")
    def health():
        return {
            "status": "healthy",
            "products_dir": str(settings.products_dir),
            "reconciled_sessions": len(reconciler.ledger),
            "failed_reconciliations": len(reconciler.dead_letters),
        }

    @app.get("/products/{product_id}")
    def get_product_info(product_id: str):
        product = store.read(product_id)
        return {"success": True, "data": describe_product(product)}

    @app.post("/create-checkout-session")
    def create_checkout_session(request: CheckoutRequest):
        product = check_availability(store, request.product_id, request.quantity)
        session = gateway.create_session(product, request.quantity)
        return {
            "success": True,
            "checkout_url": session.url,
            "session_id": session.id,
            "product": {
                "product_id": product.id,
                "quantity": request.quantity,
                "total_amount": product.amount * request.quantity,
                "unit_price": product.amount,
                "currency": product.currency,
            },
        }

    @app.get("/session-status/{session_id}")
    def get_checkout_status(session_id: str):
        return {"success": True, "session": gateway.get_session_status(session_id)}

    @app.post("/webhook")
    async def handle_webhook(request: Request):
        payload = await request.body()
        signature = request.headers.get("stripe-signature")
        return await run_in_threadpool(reconciler.handle, payload, signature)

    return app
