"""Services handling PSP webhook callbacks."""
from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from app.core.logging import get_logger
from app.models.payment_session import Provider, SessionStatus
from app.services.notifications import CompletionNotifier
from app.services.psp_signatures import SignatureVerifier
from app.services.session_store import PaymentSession, SessionStore
from app.utils.errors import SignatureInvalidError, UnknownEventError

logger = get_logger(__name__)


class EventOutcome(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"


COMPLETION_EVENTS: dict[Provider, frozenset[str]] = {
    Provider.CARD: frozenset({"checkout.session.completed", "checkout.session.async_payment_succeeded"}),
    Provider.WALLET: frozenset({"PAYMENT.CAPTURE.COMPLETED"}),
    Provider.CRYPTO_FIAT: frozenset({"payment.completed"}),
    Provider.CRYPTO_NATIVE: frozenset({"charge:confirmed"}),
}

FAILURE_EVENTS: dict[Provider, frozenset[str]] = {
    Provider.CARD: frozenset({"checkout.session.expired", "checkout.session.async_payment_failed"}),
    Provider.WALLET: frozenset({"PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"}),
    Provider.CRYPTO_FIAT: frozenset({"payment.failed", "payment.expired"}),
    Provider.CRYPTO_NATIVE: frozenset({"charge:failed"}),
}

# Payer approved a wallet order; it only completes once the order is captured.
AWAITING_CAPTURE_EVENTS: dict[Provider, frozenset[str]] = {
    Provider.WALLET: frozenset({"CHECKOUT.ORDER.APPROVED"}),
}


@dataclass
class ParsedEvent:
    """Provider envelope reduced to what correlation needs."""

    event_type: str
    session_id: str | None = None
    references: list[str] = field(default_factory=list)
    unpaid: bool = False


@dataclass
class WebhookEvent:
    provider: Provider
    raw_payload: bytes
    verified: bool
    event_type: str | None = None
    session_id: str | None = None
    order_id: str | None = None
    outcome: EventOutcome = EventOutcome.IGNORED


def _mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _event_type(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise UnknownEventError("Webhook event type is missing.")
    return value


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _refs(*values: Any) -> list[str]:
    return [value for value in values if isinstance(value, str) and value]


def _parse_card(payload: dict[str, Any]) -> ParsedEvent:
    obj = _mapping(_mapping(payload.get("data")).get("object"))
    metadata = _mapping(obj.get("metadata"))
    return ParsedEvent(
        event_type=_event_type(payload.get("type")),
        session_id=_text(metadata.get("session_id")),
        references=_refs(obj.get("id")),
        # Delayed payment methods complete the checkout before the money arrives.
        unpaid=obj.get("payment_status") == "unpaid",
    )


def _parse_wallet(payload: dict[str, Any]) -> ParsedEvent:
    resource = _mapping(payload.get("resource"))
    related = _mapping(_mapping(resource.get("supplementary_data")).get("related_ids"))
    # Capture events carry custom_id directly; order events nest it per purchase unit.
    units = resource.get("purchase_units")
    first_unit = _mapping(units[0]) if isinstance(units, list) and units else {}
    return ParsedEvent(
        event_type=_event_type(payload.get("event_type")),
        session_id=_text(resource.get("custom_id")) or _text(first_unit.get("custom_id")),
        references=_refs(related.get("order_id"), resource.get("id")),
    )


def _parse_crypto_fiat(payload: dict[str, Any]) -> ParsedEvent:
    data = _mapping(payload.get("data"))
    metadata = _mapping(data.get("metadata"))
    return ParsedEvent(
        event_type=_event_type(payload.get("event") or payload.get("type")),
        session_id=_text(metadata.get("session_id")),
        references=_refs(data.get("payment_id"), data.get("id")),
    )


def _parse_crypto_native(payload: dict[str, Any]) -> ParsedEvent:
    event = _mapping(payload.get("event"))
    data = _mapping(event.get("data"))
    metadata = _mapping(data.get("metadata"))
    return ParsedEvent(
        event_type=_event_type(event.get("type")),
        session_id=_text(metadata.get("session_id")),
        references=_refs(data.get("id"), data.get("code")),
    )


EVENT_PARSERS: dict[Provider, Callable[[dict[str, Any]], ParsedEvent]] = {
    Provider.CARD: _parse_card,
    Provider.WALLET: _parse_wallet,
    Provider.CRYPTO_FIAT: _parse_crypto_fiat,
    Provider.CRYPTO_NATIVE: _parse_crypto_native,
}


def parse_event(provider: Provider, raw_body: bytes) -> ParsedEvent:
    """Decode the provider envelope; raise UnknownEventError when malformed."""

    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise UnknownEventError("Webhook body is not valid JSON.", provider=provider.value) from exc
    if not isinstance(payload, dict):
        raise UnknownEventError("Webhook body is not a JSON object.", provider=provider.value)
    return EVENT_PARSERS[provider](payload)


def classify(provider: Provider, parsed: ParsedEvent) -> EventOutcome:
    if parsed.event_type in COMPLETION_EVENTS[provider]:
        return EventOutcome.IGNORED if parsed.unpaid else EventOutcome.COMPLETED
    if parsed.event_type in FAILURE_EVENTS[provider]:
        return EventOutcome.FAILED
    return EventOutcome.IGNORED


class WebhookDispatcher:
    """Verify, interpret and apply inbound provider webhooks."""

    def __init__(
        self,
        store: SessionStore,
        verifiers: Mapping[Provider, SignatureVerifier],
        notifier: CompletionNotifier,
    ) -> None:
        self.store = store
        self.verifiers = verifiers
        self.notifier = notifier

    def dispatch(self, provider: Provider, raw_body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        """Handle one delivery.

        Raises :class:`SignatureInvalidError` when the webhook is not authentic;
        every other problem downgrades to an ignored event so the provider
        does not retry.
        """

        if not self.verifiers[provider].verify(raw_body, headers):
            logger.warning("Rejected webhook with invalid signature", extra={"provider": provider.value})
            raise SignatureInvalidError("Invalid webhook signature.", provider=provider.value)

        event = WebhookEvent(provider=provider, raw_payload=raw_body, verified=True)
        try:
            parsed = parse_event(provider, raw_body)
        except UnknownEventError as exc:
            logger.info("Ignoring unreadable webhook", extra={"provider": provider.value, "reason": exc.message})
            return event

        event.event_type = parsed.event_type
        outcome = classify(provider, parsed)
        logger.info(
            "Payment webhook received",
            extra={"provider": provider.value, "event_type": parsed.event_type, "outcome": outcome.value},
        )
        if outcome is EventOutcome.IGNORED:
            if parsed.event_type in AWAITING_CAPTURE_EVENTS.get(provider, frozenset()):
                logger.warning(
                    "Order approved but not captured; session stays pending",
                    extra={
                        "provider": provider.value,
                        "event_type": parsed.event_type,
                        "session_id": parsed.session_id,
                        "references": parsed.references,
                    },
                )
            return event

        session = self._resolve(provider, parsed)
        if session is None:
            logger.warning(
                "Orphaned payment webhook; no matching session",
                extra={
                    "provider": provider.value,
                    "event_type": parsed.event_type,
                    "session_id": parsed.session_id,
                    "references": parsed.references,
                },
            )
            return event

        event.session_id = session.id
        event.order_id = session.order_id
        if session.degraded:
            logger.warning(
                "Webhook references a degraded session; leaving it pending",
                extra={"provider": provider.value, "session_id": session.id},
            )
            return event

        target = SessionStatus.COMPLETED if outcome is EventOutcome.COMPLETED else SessionStatus.FAILED
        updated, changed = self.store.transition(session.id, target)
        if not changed:
            logger.info(
                "Payment session already final; webhook is a no-op",
                extra={
                    "provider": provider.value,
                    "session_id": session.id,
                    "status": updated.status.value if updated else None,
                },
            )
            return event

        event.outcome = outcome
        logger.info(
            "Payment session status updated",
            extra={"provider": provider.value, "session_id": session.id, "status": target.value},
        )
        if target is SessionStatus.COMPLETED:
            self._notify(session)
        return event

    def _resolve(self, provider: Provider, parsed: ParsedEvent) -> PaymentSession | None:
        if parsed.session_id:
            session = self.store.get(parsed.session_id)
            if session is not None and session.provider is provider:
                return session
            session = self.store.find_by_reference(provider, parsed.session_id)
            if session is not None:
                return session

        for reference in parsed.references:
            session = self.store.find_by_reference(provider, reference)
            if session is not None:
                return session

        for reference in parsed.references:
            session = self.store.get(reference)
            if session is not None and session.provider is provider:
                return session
        return None

    def _notify(self, session: PaymentSession) -> None:
        try:
            self.notifier.notify_completion(session.order_id, session.id, session.provider)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Completion notifier raised; session stays completed",
                extra={"session_id": session.id, "order_id": session.order_id},
            )


__all__ = [
    "AWAITING_CAPTURE_EVENTS",
    "COMPLETION_EVENTS",
    "FAILURE_EVENTS",
    "EventOutcome",
    "ParsedEvent",
    "WebhookDispatcher",
    "WebhookEvent",
    "classify",
    "parse_event",
]
