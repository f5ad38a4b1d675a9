from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import db
from app.config import AppInfo, Settings, get_settings
from app.core.logging import get_logger, setup_logging
from app.routers import get_api_router
from app.security import reject_all_tokens
from app.services.notifications import build_notifier
from app.services.payments import build_gateway
from app.services.psp_webhooks import WebhookDispatcher
from app.services.session_store import build_session_store
from app.utils.errors import PaymentGatewayError, error_response
from app.utils.masking import secret_fingerprint

logger = get_logger(__name__)


def _current_settings() -> Settings:
    return get_settings()


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure middleware using a fresh snapshot of the settings."""

    runtime_settings = _current_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _assert_webhook_configuration(settings: Settings) -> None:
    """Fail fast when unsigned webhooks are allowed outside dev."""

    env_lower = settings.app_env.lower()
    if settings.WEBHOOK_SIGNATURE_OPTIONAL and env_lower != "dev":
        logger.error(
            "WEBHOOK_SIGNATURE_OPTIONAL is only allowed in dev; disable it before startup.",
            extra={"env": settings.app_env},
        )
        raise RuntimeError("Unsigned webhooks are not allowed in non-dev environment.")

    credentials_without_secret = {
        "card": bool(settings.STRIPE_SECRET_KEY) and not settings.STRIPE_WEBHOOK_SECRET,
        "wallet": bool(settings.PAYPAL_CLIENT_ID) and not settings.PAYPAL_WEBHOOK_ID,
        "crypto-fiat": bool(settings.STABLELINK_API_KEY) and not settings.STABLELINK_WEBHOOK_SECRET,
        "crypto-native": bool(settings.COINBASE_API_KEY) and not settings.COINBASE_WEBHOOK_SECRET,
    }
    for provider, missing in credentials_without_secret.items():
        if missing:
            logger.warning(
                "Provider has credentials but no webhook secret; its webhooks will be rejected.",
                extra={"env": settings.app_env, "provider": provider},
            )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = _current_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})
    _assert_webhook_configuration(settings)

    store = build_session_store(settings)
    gateway = build_gateway(settings, store)
    notifier = build_notifier(settings)
    app.state.session_store = store
    app.state.gateway = gateway
    app.state.notifier = notifier
    app.state.dispatcher = WebhookDispatcher(store, gateway.verifiers, notifier)
    if not hasattr(app.state, "identity_verifier"):
        app.state.identity_verifier = reject_all_tokens
    logger.info(
        "Payment gateway ready",
        extra={
            "store_backend": store.backend,
            "fallback_enabled": settings.fallback_enabled,
            "stripe_webhook_secret": secret_fingerprint(settings.STRIPE_WEBHOOK_SECRET),
        },
    )
    try:
        yield
    finally:
        gateway.close()
        close_notifier = getattr(notifier, "close", None)
        if close_notifier is not None:
            close_notifier()
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(PaymentGatewayError)
async def payment_gateway_exception_handler(request: Request, exc: PaymentGatewayError) -> JSONResponse:
    logger.info(
        "Payment gateway error",
        extra={"code": exc.code, "provider": exc.provider, "path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
