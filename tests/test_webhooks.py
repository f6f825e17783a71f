"""Tests for webhook signature verification and idempotent dispatch."""
import hashlib
import hmac
import json
from datetime import timedelta

import pytest

from conftest import NOW, FakeClock
from core.errors import HandlerError, SignatureError
from core.integrations.entities import EventStatus, InboundEvent
from core.integrations.webhooks import (
    HexSignatureVerifier,
    TimestampedSignatureVerifier,
    WebhookDispatcher,
    ZoomSignatureVerifier,
    compute_signature,
    verify_signature,
)
from core.storage import InMemoryWebhookEventStore

BODY = json.dumps({"triggerEvent": "BOOKING_CREATED", "payload": {"uid": "bk_1"}}).encode()
SECRET = "webhook-secret"


def mutations(data: bytes):
    """Every single-byte variation of ``data``."""
    for i in range(len(data)):
        yield data[:i] + bytes([data[i] ^ 0x01]) + data[i + 1:]


# ---------------------------------------------------------------------------
# Bare hex signatures
# ---------------------------------------------------------------------------

def test_compute_signature_matches_hmac():
    expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
    assert compute_signature(BODY, SECRET) == expected


def test_verify_signature_accepts_valid():
    signature = compute_signature(BODY, SECRET)
    assert verify_signature(BODY, signature, SECRET) is True
    assert verify_signature(BODY, f"sha256={signature}", SECRET) is True
    assert verify_signature(BODY, signature.upper(), SECRET) is True


def test_verify_signature_rejects_any_body_change():
    signature = compute_signature(BODY, SECRET)
    assert not any(verify_signature(m, signature, SECRET) for m in mutations(BODY))


def test_verify_signature_rejects_any_signature_change():
    signature = compute_signature(BODY, SECRET)
    for i, char in enumerate(signature):
        replacement = "0" if char != "0" else "1"
        mutated = signature[:i] + replacement + signature[i + 1:]
        assert verify_signature(BODY, mutated, SECRET) is False


def test_verify_signature_rejects_wrong_secret():
    assert verify_signature(BODY, compute_signature(BODY, "other"), SECRET) is False


@pytest.mark.parametrize("signature", [None, "", "abc", "z" * 64, compute_signature(BODY, SECRET)[:-1]])
def test_verify_signature_malformed_raises(signature):
    with pytest.raises(SignatureError):
        verify_signature(BODY, signature, SECRET)


def test_hex_verifier_headers_are_case_insensitive():
    verifier = HexSignatureVerifier(SECRET)
    headers = {"X-Cal-Signature-256": verifier.sign(BODY)["x-cal-signature-256"]}
    assert verifier.verify(BODY, headers) is True


def test_hex_verifier_missing_header():
    with pytest.raises(SignatureError):
        HexSignatureVerifier(SECRET).verify(BODY, {})


def test_verifier_requires_secret():
    with pytest.raises(ValueError):
        HexSignatureVerifier("")


# ---------------------------------------------------------------------------
# Timestamped signatures
# ---------------------------------------------------------------------------

def test_timestamped_round_trip():
    clock = FakeClock(now=1_700_000_000)
    verifier = TimestampedSignatureVerifier("whsec_test", clock=clock)
    headers = verifier.sign(BODY)

    assert headers["stripe-signature"].startswith("t=1700000000,v1=")
    assert verifier.verify(BODY, headers) is True


def test_timestamped_rejects_body_changes():
    verifier = TimestampedSignatureVerifier("whsec_test")
    headers = verifier.sign(BODY)
    assert not any(verifier.verify(m, headers) for m in mutations(BODY))


def test_timestamped_rejects_stale_timestamp():
    clock = FakeClock(now=1_700_000_000)
    verifier = TimestampedSignatureVerifier("whsec_test", tolerance_seconds=300, clock=clock)
    headers = verifier.sign(BODY)

    clock.advance(301)
    assert verifier.verify(BODY, headers) is False


def test_timestamped_accepts_any_rotated_secret():
    clock = FakeClock(now=1_700_000_000)
    current = TimestampedSignatureVerifier("whsec_current", clock=clock)
    previous = TimestampedSignatureVerifier("whsec_previous", clock=clock)
    v1_current = current.sign(BODY)["stripe-signature"].split("v1=")[1]
    v1_previous = previous.sign(BODY)["stripe-signature"].split("v1=")[1]

    header = f"t=1700000000,v1={v1_previous},v1={v1_current}"
    assert current.verify(BODY, {"stripe-signature": header}) is True


@pytest.mark.parametrize(
    "header",
    ["", "garbage", "t=1700000000", "v1=abc", "t=soon,v1=abc", "t=1700000000;v1=abc"],
)
def test_timestamped_malformed_header(header):
    verifier = TimestampedSignatureVerifier("whsec_test", clock=FakeClock(now=1_700_000_000))
    with pytest.raises(SignatureError):
        verifier.verify(BODY, {"stripe-signature": header})


@pytest.mark.parametrize("header_name", ["stripe-signature", "calendly-webhook-signature"])
@pytest.mark.parametrize("v1", ["é", "éabc", "ab" * 31 + "é9", "g" * 64])
def test_timestamped_non_hex_signature_is_malformed(header_name, v1):
    verifier = TimestampedSignatureVerifier(
        "whsec_test", header=header_name, clock=FakeClock(now=1_700_000_000)
    )
    with pytest.raises(SignatureError, match="Malformed"):
        verifier.verify(BODY, {header_name: f"t=1700000000,v1={v1}"})


def test_timestamped_non_ascii_digits_in_timestamp():
    verifier = TimestampedSignatureVerifier("whsec_test", clock=FakeClock(now=1_700_000_000))
    v1 = verifier.sign(BODY)["stripe-signature"].split("v1=")[1]
    with pytest.raises(SignatureError):
        verifier.verify(BODY, {"stripe-signature": f"t=²,v1={v1}"})


# ---------------------------------------------------------------------------
# Zoom signatures
# ---------------------------------------------------------------------------

def test_zoom_round_trip():
    verifier = ZoomSignatureVerifier("zoom-secret")
    headers = verifier.sign(BODY)
    assert headers["x-zm-signature"].startswith("v0=")
    assert verifier.verify(BODY, headers) is True
    assert not any(verifier.verify(m, headers) for m in mutations(BODY))


def test_zoom_missing_timestamp():
    verifier = ZoomSignatureVerifier("zoom-secret")
    headers = verifier.sign(BODY)
    del headers["x-zm-request-timestamp"]
    with pytest.raises(SignatureError):
        verifier.verify(BODY, headers)


@pytest.mark.parametrize("signature", ["v0=é", "v0=" + "é" * 64, "v0=abc", "v0="])
def test_zoom_non_hex_signature_is_malformed(signature):
    verifier = ZoomSignatureVerifier("zoom-secret")
    headers = verifier.sign(BODY)
    headers["x-zm-signature"] = signature
    with pytest.raises(SignatureError):
        verifier.verify(BODY, headers)


def test_zoom_url_validation_response():
    response = ZoomSignatureVerifier("zoom-secret").url_validation_response("plain-123")
    expected = hmac.new(b"zoom-secret", b"plain-123", hashlib.sha256).hexdigest()
    assert response == {"plainToken": "plain-123", "encryptedToken": expected}


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

def event(event_id="evt_1", event_type="booking.created"):
    return InboundEvent(provider="cal", event_id=event_id, event_type=event_type, payload={"n": 1})


class Recorder:
    def __init__(self, fail_times=0):
        self.fail_times = fail_times
        self.calls = []

    async def __call__(self, evt):
        self.calls.append(evt.event_id)
        if len(self.calls) <= self.fail_times:
            raise RuntimeError("database unavailable")
        return {"handled": evt.event_id}


@pytest.mark.asyncio
async def test_dispatch_processes_once():
    store = InMemoryWebhookEventStore()
    dispatcher = WebhookDispatcher("cal", store)
    handler = Recorder()
    dispatcher.register("booking.created", handler)

    first = await dispatcher.dispatch(event())
    second = await dispatcher.dispatch(event())

    assert first.status == "processed"
    assert first.to_dict()["result"] == {"handled": "evt_1"}
    assert second.status == "duplicate"
    assert second.success is True
    assert second.http_status == 200
    assert handler.calls == ["evt_1"]
    record = await store.get("cal", "evt_1")
    assert record.status == EventStatus.PROCESSED
    assert record.attempts == 1
    assert record.processed_at is not None


@pytest.mark.asyncio
async def test_dispatch_distinct_events():
    dispatcher = WebhookDispatcher("cal", InMemoryWebhookEventStore())
    handler = Recorder()
    dispatcher.register("booking.created", handler)

    await dispatcher.dispatch(event("evt_1"))
    await dispatcher.dispatch(event("evt_2"))
    assert handler.calls == ["evt_1", "evt_2"]


@pytest.mark.asyncio
async def test_dispatch_unknown_type_is_ignored():
    store = InMemoryWebhookEventStore()
    dispatcher = WebhookDispatcher("cal", store)

    result = await dispatcher.dispatch(event(event_type="form.submitted"))

    assert result.status == "ignored"
    assert result.success is True
    assert (await store.get("cal", "evt_1")).status == EventStatus.PROCESSED


@pytest.mark.asyncio
async def test_dispatch_failure_is_retried_on_redelivery():
    store = InMemoryWebhookEventStore()
    dispatcher = WebhookDispatcher("cal", store)
    handler = Recorder(fail_times=1)
    dispatcher.register("booking.created", handler)

    with pytest.raises(HandlerError) as exc_info:
        await dispatcher.dispatch(event())
    assert exc_info.value.event_id == "evt_1"
    failed = await store.get("cal", "evt_1")
    assert failed.status == EventStatus.FAILED
    assert "database unavailable" in failed.error

    result = await dispatcher.dispatch(event())
    assert result.status == "processed"
    record = await store.get("cal", "evt_1")
    assert record.status == EventStatus.PROCESSED
    assert record.attempts == 2
    assert record.error is None
    assert handler.calls == ["evt_1", "evt_1"]


@pytest.mark.asyncio
async def test_dispatch_in_progress_until_lease_expires():
    store = InMemoryWebhookEventStore()
    now = {"value": NOW}
    dispatcher = WebhookDispatcher("cal", store, lease=timedelta(seconds=30), clock=lambda: now["value"])
    handler = Recorder()
    dispatcher.register("booking.created", handler)
    await store.claim(event(), timedelta(seconds=30), NOW)

    now["value"] = NOW + timedelta(seconds=10)
    busy = await dispatcher.dispatch(event())
    assert busy.status == "in_progress"
    assert busy.http_status == 409
    assert busy.success is False
    assert handler.calls == []

    now["value"] = NOW + timedelta(seconds=31)
    result = await dispatcher.dispatch(event())
    assert result.status == "processed"
    assert handler.calls == ["evt_1"]


@pytest.mark.asyncio
async def test_dispatcher_decorator_registration():
    dispatcher = WebhookDispatcher("zoom", InMemoryWebhookEventStore())

    @dispatcher.on("meeting.ended")
    async def on_ended(evt):
        return "done"

    assert dispatcher.event_types == ["meeting.ended"]
    result = await dispatcher.dispatch(
        InboundEvent(provider="zoom", event_id="m1", event_type="meeting.ended")
    )
    assert result.detail == "done"
