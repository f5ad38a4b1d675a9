"""Test configuration."""
import itertools
import os
import threading
import time
from collections.abc import AsyncIterator, Callable, Iterator
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
import stripe
from httpx import ASGITransport, AsyncClient

# --- Default env for the test run
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./payment_gateway_test.db")
os.environ.setdefault("SESSION_STORE_BACKEND", "memory")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_gateway")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_gateway")
os.environ.setdefault("PAYPAL_CLIENT_ID", "paypal-client")
os.environ.setdefault("PAYPAL_CLIENT_SECRET", "paypal-secret")
os.environ.setdefault("PAYPAL_WEBHOOK_ID", "WH-TEST-1")
os.environ.setdefault("STABLELINK_API_KEY", "sl-key")
os.environ.setdefault("STABLELINK_API_SECRET", "sl-api-secret")
os.environ.setdefault("STABLELINK_WEBHOOK_SECRET", "sl-webhook-secret")
os.environ.setdefault("COINBASE_API_KEY", "cb-key")
os.environ.setdefault("COINBASE_WEBHOOK_SECRET", "cb-webhook-secret")

from app.config import Settings, get_settings  # noqa: E402
from app.main import app  # noqa: E402
from app.models.payment_session import Provider  # noqa: E402
from app.security import reject_all_tokens  # noqa: E402
from app.services.payments import PaymentGateway, build_gateway  # noqa: E402
from app.services.psp_webhooks import WebhookDispatcher  # noqa: E402
from app.services.session_store import InMemorySessionStore  # noqa: E402


class RecordingNotifier:
    """Collects completion notifications instead of sending them."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Provider]] = []
        self._lock = threading.Lock()

    def notify_completion(self, order_id: str, session_id: str, provider: Provider) -> None:
        with self._lock:
            self.calls.append((order_id, session_id, provider))


Responder = Callable[[httpx.Request], httpx.Response]


class ProviderStub:
    """Answers PayPal, StableLink and Coinbase calls by URL path."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._ids = itertools.count(1)
        self.routes: dict[str, Responder] = {
            "/v1/oauth2/token": lambda request: httpx.Response(
                200, json={"access_token": "A21AA-test-token", "expires_in": 32400}
            ),
            "/v2/checkout/orders": self._paypal_order,
            "/v1/notifications/verify-webhook-signature": lambda request: httpx.Response(
                200, json={"verification_status": "SUCCESS"}
            ),
            "/v1/payments": self._stablelink_payment,
            "/charges": self._coinbase_charge,
        }

    def _paypal_order(self, request: httpx.Request) -> httpx.Response:
        order_id = f"5O190127TN36471{next(self._ids)}T"
        return httpx.Response(
            201,
            json={
                "id": order_id,
                "status": "PAYER_ACTION_REQUIRED",
                "links": [
                    {"rel": "self", "href": f"https://api-m.paypal.com/v2/checkout/orders/{order_id}"},
                    {"rel": "payer-action", "href": f"https://www.paypal.com/checkoutnow?token={order_id}"},
                ],
            },
        )

    def _stablelink_payment(self, request: httpx.Request) -> httpx.Response:
        payment_id = f"slp_{next(self._ids)}"
        return httpx.Response(
            200,
            json={"payment_id": payment_id, "checkout_url": f"https://pay.stablelink.io/checkout/{payment_id}"},
        )

    def _coinbase_charge(self, request: httpx.Request) -> httpx.Response:
        n = next(self._ids)
        return httpx.Response(
            201,
            json={
                "data": {
                    "id": f"charge-{n}",
                    "code": f"CODE{n:04d}",
                    "hosted_url": f"https://commerce.coinbase.com/charges/CODE{n:04d}",
                }
            },
        )

    def respond(self, path: str, responder: Responder) -> None:
        self.routes[path] = responder

    def fail(self, path: str, status_code: int = 503) -> None:
        self.routes[path] = lambda request: httpx.Response(status_code, json={"error": "unavailable"})

    def disconnect(self, path: str) -> None:
        def _raise(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        self.routes[path] = _raise

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get(request.url.path)
        if responder is None:
            return httpx.Response(404, json={"error": "not found"})
        return responder(request)


class StripeCheckoutStub:
    """Stands in for ``stripe.checkout.Session.create``."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self._ids = itertools.count(1)
        self.next_result: SimpleNamespace | None = None
        self.error: Exception | None = None

    def __call__(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if self.next_result is not None:
            result, self.next_result = self.next_result, None
            return result
        session_id = f"cs_test_{next(self._ids)}"
        return SimpleNamespace(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")


@pytest.fixture
def app_settings() -> Settings:
    return get_settings()


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture(autouse=True)
def stripe_checkout(monkeypatch) -> StripeCheckoutStub:
    stub = StripeCheckoutStub()
    monkeypatch.setattr(stripe.checkout.Session, "create", stub)
    return stub


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def provider_client(provider_stub: ProviderStub) -> Iterator[httpx.Client]:
    client = httpx.Client(transport=httpx.MockTransport(provider_stub.handler))
    yield client
    client.close()


@pytest.fixture
def gateway(app_settings: Settings, store: InMemorySessionStore, provider_client: httpx.Client) -> PaymentGateway:
    return build_gateway(app_settings, store, http_client=provider_client)


@pytest.fixture
def dispatcher(
    store: InMemorySessionStore, gateway: PaymentGateway, notifier: RecordingNotifier
) -> WebhookDispatcher:
    return WebhookDispatcher(store, gateway.verifiers, notifier)


@pytest.fixture(autouse=True)
def wire_app_state(store, gateway, dispatcher, notifier) -> Iterator[None]:
    app.state.session_store = store
    app.state.gateway = gateway
    app.state.notifier = notifier
    app.state.dispatcher = dispatcher
    app.state.identity_verifier = reject_all_tokens
    yield


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def checkout_body() -> dict[str, Any]:
    return {
        "orderId": "ORD-1",
        "amount": "100.00",
        "currency": "GBP",
        "provider": "card",
        "returnUrl": "https://x/ok",
        "cancelUrl": "https://x/cancel",
    }


@pytest.fixture
def signed_headers(app_settings: Settings) -> Callable[..., dict[str, str]]:
    """Build the signature headers each provider would send for ``body``."""

    from app.services.psp_signatures import compute_hmac_signature

    def _sign(provider: Provider, body: bytes, *, secret: str | None = None, timestamp: int | None = None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if provider is Provider.CARD:
            ts = timestamp if timestamp is not None else int(time.time())
            signature = compute_hmac_signature(
                secret or app_settings.STRIPE_WEBHOOK_SECRET, f"{ts}.".encode() + body
            )
            headers["Stripe-Signature"] = f"t={ts},v1={signature}"
        elif provider is Provider.WALLET:
            headers.update(
                {
                    "PAYPAL-TRANSMISSION-ID": "69cd13f0-d67a-11e5-baa3-778b53f4ae55",
                    "PAYPAL-TRANSMISSION-TIME": "2026-10-18T10:00:00Z",
                    "PAYPAL-CERT-URL": "https://api.paypal.com/v1/notifications/certs/CERT-360caa42",
                    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
                    "PAYPAL-TRANSMISSION-SIG": "lmI95Jx3Y9nhR5SJWlHVIWpg4AgFk7n9bCHSRxbrd8A9zrhdu2rMyFrmz",
                }
            )
        elif provider is Provider.CRYPTO_FIAT:
            headers["X-StableLink-Signature"] = compute_hmac_signature(
                secret or app_settings.STABLELINK_WEBHOOK_SECRET, body
            )
        else:
            headers["X-CC-Webhook-Signature"] = compute_hmac_signature(
                secret or app_settings.COINBASE_WEBHOOK_SECRET, body
            )
        return headers

    return _sign
