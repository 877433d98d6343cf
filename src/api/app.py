"""FastAPI application exposing the backend payment functions and webhooks."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from src.api.auth_middleware import AuthMiddleware
from src.audit.logger import AuditLogger, AuditSink
from src.config import Settings
from src.payments.errors import (
    ConfigError,
    PaymentValidationError,
    ProviderError,
    SignatureError,
    VerificationError,
)
from src.payments.functions import (
    CreateCustomerRequest,
    CreatePaymentIntentRequest,
    PaymentFunctions,
    stripe_provider_factory,
)
from src.payments.provider import StripeWebhookVerifier
from src.payments.reconciliation import ReconciliationLedger
from src.payments.verification import VerificationService
from src.payments.webhook import StripeWebhookHandler
from src.security.alerts import AlertDispatcher, LoggingAlertDispatcher, WebhookAlertDispatcher
from src.security.events import SecurityEventService, SecurityEventValidationError
from src.store.records import PortalStore

logger = logging.getLogger(__name__)

STRIPE_WEBHOOK_PATH = "/webhook/stripe"

T = TypeVar("T")


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = Settings.from_env()
    if not settings.api_token:
        raise RuntimeError("PORTAL_API_TOKEN must be set")

    store = PortalStore.open(settings.db_path)
    audit_sink: AuditSink = store
    if settings.audit_log_path:
        audit_sink = AuditLogger(
            settings.audit_log_path,
            max_bytes=settings.audit_log_max_bytes,
            backup_count=settings.audit_log_backup_count,
        )
    alerts: AlertDispatcher = LoggingAlertDispatcher()
    if settings.security_alert_webhook_url:
        alerts = WebhookAlertDispatcher(settings.security_alert_webhook_url)

    ledger = ReconciliationLedger(store)
    return create_app(
        token=settings.api_token,
        functions=PaymentFunctions(stripe_provider_factory(settings.stripe_secret_key)),
        webhook_handler=StripeWebhookHandler(
            StripeWebhookVerifier(settings.stripe_webhook_secret), store, ledger,
        ),
        security_events=SecurityEventService(store, alerts),
        verification=VerificationService(ttl_seconds=settings.verification_code_ttl_seconds),
        audit_sink=audit_sink,
        cors_origins=settings.cors_allow_origins,
    )


def create_app(
    token: str,
    functions: PaymentFunctions,
    webhook_handler: StripeWebhookHandler,
    security_events: SecurityEventService,
    verification: VerificationService,
    audit_sink: AuditSink | None = None,
    cors_origins: Sequence[str] = ("*",),
) -> FastAPI:
    """Create the portal backend app with bearer auth on the function routes."""
    app = FastAPI(docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/functions/create-payment-intent")
    async def create_payment_intent(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            req = CreatePaymentIntentRequest.model_validate(body)
            created = await _run(functions.create_payment_intent, req)
        except Exception as e:
            return _error_response(e, "create-payment-intent")
        return JSONResponse(created.model_dump())

    @app.post("/functions/create-customer")
    async def create_customer(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            req = CreateCustomerRequest.model_validate(body)
            customer = await _run(functions.create_customer, req)
        except Exception as e:
            return _error_response(e, "create-customer")
        return JSONResponse(customer.model_dump())

    @app.post("/functions/get-payment-methods")
    async def get_payment_methods(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            result = await _run(functions.get_payment_methods, body.get("customer_id"))
        except Exception as e:
            return _error_response(e, "get-payment-methods")
        return JSONResponse(result)

    @app.post("/functions/issue-verification-code")
    async def issue_verification_code(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            expires_at = verification.issue(
                str(body.get("challenge_id") or ""), str(body.get("recipient") or ""),
            )
        except VerificationError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse({"expires_at": expires_at})

    @app.post("/functions/verify-code")
    async def verify_code(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            verified = verification.verify(
                str(body.get("challenge_id") or ""), str(body.get("code") or ""),
            )
        except VerificationError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse({"verified": verified})

    @app.post(STRIPE_WEBHOOK_PATH)
    async def stripe_webhook(request: Request) -> JSONResponse:
        payload = await request.body()
        signature = request.headers.get("stripe-signature")
        try:
            outcome = webhook_handler.handle(payload, signature)
        except SignatureError as e:
            logger.warning("Webhook signature verification failed: %s", e)
            return JSONResponse({"error": f"Webhook Error: {e}"}, status_code=400)
        except Exception:
            logger.exception("Webhook processing failed")
            return JSONResponse({"error": "Internal server error"}, status_code=500)
        return JSONResponse({"received": True, "handled": outcome.handled})

    @app.post("/webhook/security")
    async def security_webhook(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if isinstance(body, JSONResponse):
            return body
        # Attribute the event to the caller when the client did not say
        body.setdefault("ip_address", request.client.host if request.client else None)
        body.setdefault("user_agent", request.headers.get("user-agent"))
        try:
            result = await security_events.ingest(body)
        except SecurityEventValidationError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except Exception:
            logger.exception("Security webhook error")
            return JSONResponse({"error": "Internal server error"}, status_code=500)
        return JSONResponse({
            "success": True,
            "event_id": result.event_id,
            "escalated": result.escalated,
            "message": "Security event logged successfully",
        })

    # Auth wraps the routes; CORS is outermost so preflights are answered first
    app.add_middleware(
        AuthMiddleware,
        token=token,
        audit_sink=audit_sink,
        webhook_paths=frozenset({STRIPE_WEBHOOK_PATH}),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins),
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    return app


async def _run(func: Callable[..., T], *args: Any) -> T:
    # Provider calls block on network I/O
    return await run_in_threadpool(func, *args)


async def _json_body(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        body = json.loads(await request.body() or b"{}")
    except ValueError:
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
    return body


def _error_response(exc: Exception, operation: str) -> JSONResponse:
    if isinstance(exc, (PaymentValidationError, ValidationError)):
        message = str(exc) if isinstance(exc, PaymentValidationError) else "Invalid request"
        return JSONResponse({"error": message}, status_code=400)
    if isinstance(exc, ConfigError):
        return JSONResponse({"error": str(exc)}, status_code=500)
    if isinstance(exc, ProviderError):
        logger.warning("%s failed at provider: %s", operation, exc)
        return JSONResponse({"error": str(exc)}, status_code=502)
    logger.exception("Unexpected error in %s", operation, exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)
