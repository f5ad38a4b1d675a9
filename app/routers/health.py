"""Health check endpoint."""
from __future__ import annotations

import logging

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Request
from sqlalchemy import text

from app.config import Settings, get_settings
from app.db import get_engine
from app.utils.masking import masked_secret_status

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _store_status(store) -> str:
    """Return 'ok' if the session store answers, 'error' otherwise."""

    try:
        store.ping()
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("Session store health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        config = Config("alembic.ini")
        script = ScriptDirectory.from_config(config)
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> tuple[bool, str]:
    expected_head = _expected_migration_head()
    try:
        engine = get_engine()
        with engine.connect() as conn:
            result = conn.execute(text("SELECT version_num FROM alembic_version"))
            current = result.scalar()
        if expected_head and current == expected_head:
            return True, "up_to_date"
        if expected_head is None:
            return False, "unknown"
        return False, "out_of_date"
    except Exception:  # noqa: BLE001
        logger.exception("Migration check failed")
        return False, "unknown"


def _webhook_secret_fingerprints(settings: Settings) -> dict[str, str | None]:
    return masked_secret_status(
        {
            "card": settings.STRIPE_WEBHOOK_SECRET,
            "wallet": settings.PAYPAL_WEBHOOK_ID,
            "crypto-fiat": settings.STABLELINK_WEBHOOK_SECRET,
            "crypto-native": settings.COINBASE_WEBHOOK_SECRET,
        }
    )


@router.get("", summary="Health check")
def healthcheck(request: Request) -> dict[str, object]:
    """Return store reachability and provider configuration without exposing secrets."""

    settings = get_settings()
    store = request.app.state.session_store
    gateway = request.app.state.gateway

    store_status = _store_status(store)
    store_ok = store_status == "ok"
    payload: dict[str, object] = {
        "store_backend": store.backend,
        "store_status": store_status,
    }
    migration_ok = True
    if store.backend == "sql":
        if store_ok:
            migration_ok, migration_status = _migrations_status()
        else:
            migration_ok, migration_status = False, "unknown"
        payload["migrations_ok"] = migration_ok
        payload["migrations_status"] = migration_status

    degraded = not (store_ok and migration_ok)
    payload.update(
        {
            "status": "degraded" if degraded else "ok",
            "providers": {
                str(entry["id"].value): bool(entry["available"])
                for entry in gateway.provider_catalog()
            },
            "webhook_secret_fingerprints": _webhook_secret_fingerprints(settings),
            "webhook_signature_optional": bool(settings.WEBHOOK_SIGNATURE_OPTIONAL),
            "fallback_enabled": settings.fallback_enabled,
        }
    )
    return payload
