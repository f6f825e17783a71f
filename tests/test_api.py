"""End-to-end tests for the FastAPI surface: webhooks, OAuth and cron."""
import asyncio
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import SleepRecorder
from core.config import PROVIDER_NAMES
from core.integrations.entities import Booking, BookingStatus, ConnectionStatus, EventStatus
from core.integrations.oauth_state import code_challenge_s256
from core.integrations.webhooks import (
    HexSignatureVerifier,
    TimestampedSignatureVerifier,
    ZoomSignatureVerifier,
)
from core.resilience import ResilienceRegistry
from api.main import create_app


class ProviderAPI:
    """Fake token endpoints for every provider, recording each request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_response = httpx.Response(
            200,
            json={
                "access_token": "provider_at",
                "refresh_token": "provider_rt",
                "expires_in": 3600,
                "scope": "default",
                "owner": "https://api.calendly.com/users/U1",
            },
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/revoke"):
            return httpx.Response(200, json={})
        return self.token_response


@pytest.fixture
def provider_api():
    return ProviderAPI()


@pytest.fixture
def client(app_settings, stores, provider_api):
    resilience = ResilienceRegistry.for_providers(
        PROVIDER_NAMES, app_settings.resilience, sleep=SleepRecorder()
    )
    app = create_app(
        app_settings,
        stores=stores,
        resilience=resilience,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider_api)),
    )
    return TestClient(app)


USER = {"X-User-ID": "coach_1"}
CRON = {"Authorization": "Bearer cron-secret"}


def stripe_cancellation(event_id="evt_cancel_1"):
    return json.dumps(
        {
            "id": event_id,
            "type": "payment_intent.canceled",
            "created": 1767261600,
            "livemode": False,
            "data": {
                "object": {
                    "id": "pi_1",
                    "object": "payment_intent",
                    "cancellation_reason": "requested_by_customer",
                    "metadata": {"booking_id": "bk_1"},
                }
            },
        }
    ).encode()


def signed_post(client, provider, body, headers):
    return client.post(
        f"/webhooks/{provider}",
        content=body,
        headers={"content-type": "application/json", **headers},
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

def test_health_reports_circuits(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert set(body["circuits"]) == set(PROVIDER_NAMES)
    assert body["circuits"]["cal"]["state"] == "closed"


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

def test_stripe_cancellation_is_processed_exactly_once(client, stores):
    asyncio.run(stores.bookings.save(Booking(external_id="bk_1", provider="cal", status=BookingStatus.CONFIRMED)))
    writes_before = len(stores.bookings.writes)
    body = stripe_cancellation()
    headers = TimestampedSignatureVerifier("whsec_test_secret").sign(body)

    first = signed_post(client, "stripe", body, headers)

    assert first.status_code == 200
    assert first.json()["status"] == "processed"
    assert first.json()["event_id"] == "evt_cancel_1"
    assert len(stores.bookings.writes) == writes_before + 1
    booking = asyncio.run(stores.bookings.get("bk_1"))
    assert booking.status == BookingStatus.CANCELLED
    assert booking.payment_status == "canceled"
    record = asyncio.run(stores.events.get("stripe", "evt_cancel_1"))
    assert record.status == EventStatus.PROCESSED
    assert record.attempts == 1

    again = signed_post(client, "stripe", body, headers)

    assert again.status_code == 200
    assert again.json()["status"] == "duplicate"
    assert len(stores.bookings.writes) == writes_before + 1


def test_cal_cancellation_webhook(client, stores):
    body = json.dumps(
        {
            "triggerEvent": "BOOKING_CANCELLED",
            "createdAt": "2026-01-02T09:00:00.000Z",
            "payload": {"uid": "bk_7", "title": "Career coaching", "cancellationReason": "Travel"},
        }
    ).encode()
    headers = HexSignatureVerifier("cal-webhook-secret").sign(body)

    resp = signed_post(client, "cal", body, headers)

    assert resp.status_code == 200
    assert resp.json()["result"] == {"booking": "bk_7", "status": "cancelled"}
    booking = asyncio.run(stores.bookings.get("bk_7"))
    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancellation_reason == "Travel"


def test_webhook_with_bad_signature_is_rejected(client, stores):
    body = stripe_cancellation()
    headers = TimestampedSignatureVerifier("whsec_wrong").sign(body)

    resp = signed_post(client, "stripe", body, headers)

    assert resp.status_code == 401
    assert resp.json()["success"] is False
    assert asyncio.run(stores.events.get("stripe", "evt_cancel_1")) is None


@pytest.mark.parametrize(
    "provider, header_name, value",
    [
        ("stripe", "stripe-signature", "t=1767261600,v1=éabc"),
        ("calendly", "calendly-webhook-signature", "t=1767261600,v1=é"),
        ("zoom", "x-zm-signature", "v0=é"),
        ("cal", "x-cal-signature-256", "é" * 64),
    ],
)
def test_webhook_with_non_ascii_signature_is_rejected(client, provider, header_name, value):
    headers = {header_name: value.encode("latin-1"), "x-zm-request-timestamp": b"1767261600"}
    resp = signed_post(client, provider, stripe_cancellation(), headers)

    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_webhook_without_signature_is_rejected(client):
    resp = signed_post(client, "cal", b'{"triggerEvent": "PING"}', {})
    assert resp.status_code == 401


def test_webhook_malformed_body_is_400(client):
    body = b'{"triggerEvent": "BOOKING_CREATED", "payload": {}}'
    resp = signed_post(client, "cal", body, HexSignatureVerifier("cal-webhook-secret").sign(body))
    assert resp.status_code == 400
    assert resp.json()["provider"] == "cal"


def test_webhook_unknown_provider(client):
    assert client.post("/webhooks/acme", content=b"{}").status_code == 404


def test_webhook_handler_failure_is_redelivered(client, stores):
    calls = []

    async def flaky(event):
        calls.append(event.event_id)
        if len(calls) == 1:
            raise RuntimeError("database unavailable")
        return {"ok": True}

    client.app.state.integrations["stripe"].dispatcher.register("customer.updated", flaky)
    body = json.dumps(
        {"id": "evt_flaky", "type": "customer.updated", "data": {"object": {"id": "cus_1"}}}
    ).encode()
    headers = TimestampedSignatureVerifier("whsec_test_secret").sign(body)

    failed = signed_post(client, "stripe", body, headers)
    assert failed.status_code == 500
    assert asyncio.run(stores.events.get("stripe", "evt_flaky")).status == EventStatus.FAILED

    retried = signed_post(client, "stripe", body, headers)
    assert retried.status_code == 200
    assert retried.json()["status"] == "processed"
    assert calls == ["evt_flaky", "evt_flaky"]


def test_zoom_url_validation_handshake(client, stores):
    body = json.dumps(
        {"event": "endpoint.url_validation", "event_ts": 1767261600000, "payload": {"plainToken": "plain-123"}}
    ).encode()
    verifier = ZoomSignatureVerifier("zoom-webhook-secret")

    resp = signed_post(client, "zoom", body, verifier.sign(body))

    assert resp.status_code == 200
    assert resp.json() == verifier.url_validation_response("plain-123")
    assert asyncio.run(stores.events.get("zoom", "endpoint.url_validation:1767261600000")) is None


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------

def test_token_exchange_persists_credential(client, stores, provider_api):
    resp = client.post(
        "/oauth/cal/token-exchange",
        json={"code": "auth-code", "redirect_uri": "https://app.test/oauth/cal/callback"},
        headers=USER,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["access_token"] == "provider_at"
    assert "refresh_token" not in body
    assert json.loads(provider_api.requests[0].content)["code"] == "auth-code"
    stored = asyncio.run(stores.credentials.get("coach_1", "cal"))
    assert stored.status == ConnectionStatus.CONNECTED
    assert stored.refresh_token == "provider_rt"


def test_token_exchange_requires_user(client):
    resp = client.post("/oauth/cal/token-exchange", json={"code": "auth-code"})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Authentication required"}


def test_token_exchange_validates_body(client):
    resp = client.post("/oauth/cal/token-exchange", json={"code": ""}, headers=USER)
    assert resp.status_code == 422
    assert resp.json()["success"] is False


def test_token_exchange_provider_rejection(client, provider_api):
    provider_api.token_response = httpx.Response(400, json={"error": "invalid_grant"})

    resp = client.post("/oauth/cal/token-exchange", json={"code": "used-code"}, headers=USER)

    assert resp.status_code == 502
    assert resp.json()["success"] is False
    assert "provider_at" not in resp.text


def test_oauth_not_available_for_stripe(client):
    assert client.get("/oauth/stripe/status", headers=USER).status_code == 404


def test_authorize_and_callback_with_pkce(client, stores, provider_api):
    resp = client.get(
        "/oauth/calendly/authorize",
        params={"redirect": "/dashboard/integrations"},
        headers=USER,
        follow_redirects=False,
    )
    assert resp.status_code == 307
    location = urlparse(resp.headers["location"])
    query = {k: v[0] for k, v in parse_qs(location.query).items()}
    assert location.netloc == "auth.calendly.com"
    assert query["code_challenge_method"] == "S256"

    callback = client.get(
        "/oauth/calendly/callback",
        params={"code": "auth-code", "state": query["state"]},
        follow_redirects=False,
    )

    assert callback.status_code == 307
    assert callback.headers["location"] == "https://app.test/dashboard/integrations?connected=calendly"
    form = parse_qs(provider_api.requests[0].content.decode())
    assert code_challenge_s256(form["code_verifier"][0]) == query["code_challenge"]
    stored = asyncio.run(stores.credentials.get("coach_1", "calendly"))
    assert stored.provider_user_id == "https://api.calendly.com/users/U1"


def test_authorize_rejects_offsite_redirect(client):
    resp = client.get(
        "/oauth/calendly/authorize",
        params={"redirect": "https://evil.example"},
        headers=USER,
        follow_redirects=False,
    )
    state = parse_qs(urlparse(resp.headers["location"]).query)["state"][0]
    claims = client.app.state.state_signer.verify(state)
    assert claims["redirect"] == "/dashboard/settings"


def test_callback_rejects_tampered_state(client, provider_api):
    resp = client.get(
        "/oauth/calendly/callback",
        params={"code": "auth-code", "state": "forged.state"},
        follow_redirects=False,
    )
    assert resp.status_code == 400
    assert provider_api.requests == []


def test_callback_rejects_non_ascii_state(client, provider_api):
    resp = client.get(
        "/oauth/calendly/callback",
        params={"code": "auth-code", "state": "abc.é"},
        follow_redirects=False,
    )
    assert resp.status_code == 400
    assert provider_api.requests == []


def test_callback_rejects_state_for_other_provider(client):
    state = client.app.state.state_signer.sign({"user_id": "coach_1", "provider": "cal", "redirect": "/"})
    resp = client.get(
        "/oauth/calendly/callback", params={"code": "c", "state": state}, follow_redirects=False
    )
    assert resp.status_code == 400


def test_callback_with_denied_consent(client, provider_api):
    state = client.app.state.state_signer.sign(
        {"user_id": "coach_1", "provider": "calendly", "redirect": "/dashboard"}
    )
    resp = client.get(
        "/oauth/calendly/callback",
        params={"error": "access_denied", "state": state},
        follow_redirects=False,
    )
    assert resp.status_code == 307
    assert resp.headers["location"] == (
        "https://app.test/dashboard?error=access_denied&provider=calendly"
    )
    assert provider_api.requests == []


def test_status_and_disconnect(client, provider_api):
    client.post("/oauth/calendly/token-exchange", json={"code": "auth-code"}, headers=USER)

    status = client.get("/oauth/calendly/status", headers=USER).json()
    assert status["connected"] is True
    assert "access_token" not in status["credential"]

    resp = client.post("/oauth/calendly/disconnect", headers=USER)
    assert resp.json() == {"success": True, "provider": "calendly", "status": "disconnected"}
    assert provider_api.requests[-1].url.path == "/oauth/revoke"

    status = client.get("/oauth/calendly/status", headers=USER).json()
    assert status["connected"] is False
    assert status["reconnect_required"] is True


def test_status_stays_connected_while_refresh_is_failing(client, provider_api):
    provider_api.token_response = httpx.Response(
        200, json={"access_token": "provider_at", "refresh_token": "provider_rt", "expires_in": 60}
    )
    client.post("/oauth/calendly/token-exchange", json={"code": "auth-code"}, headers=USER)
    provider_api.token_response = httpx.Response(503, json={"error": "temporarily_unavailable"})

    resp = client.get("/oauth/calendly/status", headers=USER)

    assert resp.status_code == 200
    body = resp.json()
    assert body["connected"] is True
    assert body["reconnect_required"] is False
    assert body["credential"]["status"] == "error"


# ---------------------------------------------------------------------------
# Cron
# ---------------------------------------------------------------------------

def test_cron_requires_secret(client):
    assert client.post("/cron/refresh-tokens/calendly").status_code == 401
    assert client.post(
        "/cron/refresh-tokens/calendly", headers={"Authorization": "Bearer wrong"}
    ).status_code == 401


def test_cron_refreshes_tokens(client, stores, provider_api):
    provider_api.token_response = httpx.Response(
        200, json={"access_token": "provider_at", "refresh_token": "provider_rt", "expires_in": 600}
    )
    client.post("/oauth/calendly/token-exchange", json={"code": "auth-code"}, headers=USER)

    resp = client.post("/cron/refresh-tokens/calendly", headers=CRON)

    assert resp.status_code == 200
    results = resp.json()["results"]
    assert results["success"] == 1
    assert results["failed"] == 0
    form = parse_qs(provider_api.requests[-1].content.decode())
    assert form["grant_type"] == ["refresh_token"]


def test_cron_unknown_provider(client):
    assert client.post("/cron/refresh-tokens/stripe", headers=CRON).status_code == 404
