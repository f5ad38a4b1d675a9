"""Payment session and provider webhook endpoints."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from app.models.payment_session import Provider
from app.schemas.payment import (
    CreatePaymentRequest,
    PaymentSessionCreated,
    PaymentStatusRead,
    ProviderInfo,
    ProvidersRead,
    WebhookAck,
)
from app.security import current_identity
from app.services.payments import PaymentGateway
from app.services.psp_webhooks import WebhookDispatcher
from app.utils.errors import SessionNotFoundError, error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.dispatcher


@router.post("/create", response_model=PaymentSessionCreated, status_code=status.HTTP_201_CREATED)
def create_payment(
    payload: CreatePaymentRequest,
    gateway: PaymentGateway = Depends(get_gateway),
    identity: Any = Depends(current_identity),
) -> PaymentSessionCreated:
    """Create a checkout session with the requested provider."""

    session = gateway.create_session(payload.provider, payload.to_payment_request())
    return PaymentSessionCreated(
        session_id=session.id,
        payment_url=session.checkout_url,
        provider=session.provider,
        amount=session.amount,
        currency=session.currency,
        order_id=session.order_id,
    )


@router.post("/webhook/{provider}", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def payment_webhook(
    provider: str,
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> WebhookAck:
    try:
        provider_tag = Provider.parse(provider)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("UNKNOWN_PROVIDER", f"Unknown payment provider: {provider}"),
        )

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    event = await run_in_threadpool(dispatcher.dispatch, provider_tag, raw_body, headers)
    logger.info(
        "Payment webhook processed",
        extra={"provider": provider_tag.value, "session_id": event.session_id, "outcome": event.outcome.value},
    )
    return WebhookAck()


@router.get("/status/{session_id}", response_model=PaymentStatusRead)
def payment_status(session_id: str, gateway: PaymentGateway = Depends(get_gateway)) -> PaymentStatusRead:
    session = gateway.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(f"Payment session {session_id} not found.")
    return PaymentStatusRead(
        session_id=session.id,
        status=session.status,
        order_id=session.order_id,
        amount=session.amount,
        currency=session.currency,
        provider=session.provider,
        created_at=session.created_at,
    )


@router.get("/providers", response_model=ProvidersRead)
def list_providers(gateway: PaymentGateway = Depends(get_gateway)) -> ProvidersRead:
    """List the providers whose credentials are configured."""

    providers = [ProviderInfo(**entry) for entry in gateway.provider_catalog()]
    return ProvidersRead(providers=[p for p in providers if p.available])


__all__ = ["router"]
