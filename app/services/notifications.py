"""Best-effort completion notifications."""
from __future__ import annotations

from typing import Protocol

import httpx

from app.config import Settings
from app.core.logging import get_logger
from app.models.payment_session import Provider

logger = get_logger(__name__)


class CompletionNotifier(Protocol):
    def notify_completion(self, order_id: str, session_id: str, provider: Provider) -> None:
        ...


def completion_message(order_id: str, session_id: str, provider: Provider) -> str:
    return f"Payment received for order **{order_id}** via {provider.display_name} (session {session_id})"


class LoggingCompletionNotifier:
    """Used when no notification channel is configured."""

    def notify_completion(self, order_id: str, session_id: str, provider: Provider) -> None:
        logger.info(
            "Payment completed",
            extra={"order_id": order_id, "session_id": session_id, "provider": provider.value},
        )


class HttpCompletionNotifier:
    """Posts a chat message to the messaging service; never raises."""

    def __init__(
        self, url: str, channel: str | None, http_client: httpx.Client, *, owns_client: bool = False
    ) -> None:
        self.url = url
        self.channel = channel
        self.http = http_client
        self._owns_client = owns_client

    def notify_completion(self, order_id: str, session_id: str, provider: Provider) -> None:
        payload = {
            "channel": self.channel,
            "message": completion_message(order_id, session_id, provider),
            "order_id": order_id,
            "session_id": session_id,
            "provider": provider.value,
        }
        try:
            response = self.http.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Completion notification failed",
                extra={"order_id": order_id, "session_id": session_id, "cause": exc.__class__.__name__},
            )
            return
        logger.info("Completion notification sent", extra={"order_id": order_id, "session_id": session_id})

    def close(self) -> None:
        if self._owns_client:
            self.http.close()


def build_notifier(settings: Settings, http_client: httpx.Client | None = None) -> CompletionNotifier:
    if not settings.NOTIFY_WEBHOOK_URL:
        return LoggingCompletionNotifier()
    if http_client is not None:
        return HttpCompletionNotifier(settings.NOTIFY_WEBHOOK_URL, settings.NOTIFY_CHANNEL, http_client)
    client = httpx.Client(timeout=httpx.Timeout(settings.NOTIFY_TIMEOUT_SECONDS))
    return HttpCompletionNotifier(settings.NOTIFY_WEBHOOK_URL, settings.NOTIFY_CHANNEL, client, owns_client=True)


__all__ = [
    "CompletionNotifier",
    "LoggingCompletionNotifier",
    "HttpCompletionNotifier",
    "build_notifier",
    "completion_message",
]
