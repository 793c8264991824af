"""Routes that reach the store, Memberstack or Stripe must run off the event loop."""
import asyncio

import pytest

from entitlement_bridge.api import deps
from entitlement_bridge.features.webhooks.dispatch import WebhookOutcome
from entitlement_bridge.main import app


def _on_event_loop():
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class RecordingService:
    def __init__(self):
        self.calls = []

    def handle(self, body, headers, candidates):
        self.calls.append((_on_event_loop(), body))
        return WebhookOutcome("evt_1", "invoice.paid", "test", "ignored")

    def create_intent(self, member_id, programs, **kwargs):
        self.calls.append((_on_event_loop(), member_id))
        return "i_1"

    def create_session(self, **kwargs):
        self.calls.append((_on_event_loop(), kwargs["member_id"]))
        return {"id": "cs_1", "url": None}


@pytest.fixture
def recording(client):
    service = RecordingService()
    for dep in (deps.get_stripe_dispatcher, deps.get_memberstack_dispatcher, deps.get_ledger, deps.get_checkout_service):
        app.dependency_overrides[dep] = lambda: service
    return service


@pytest.mark.parametrize("path", ["/api/stripe-webhook", "/api/memberstack-webhook"])
def test_webhooks_dispatch_in_threadpool_with_raw_body(client, recording, path):
    resp = client.post(path, content=b'{"raw": true}')

    assert resp.status_code == 200
    assert recording.calls == [(False, b'{"raw": true}')]


def test_intent_registration_runs_in_threadpool(client, recording):
    resp = client.post("/api/intent", json={"memberId": "m1", "programs": ["athletyx"]})

    assert resp.status_code == 200
    assert recording.calls == [(False, "m1")]


def test_checkout_runs_in_threadpool(client, recording):
    resp = client.post(
        "/api/create-checkout-session",
        json={"lineItems": [{"price": "p"}], "email": "a@b.co", "memberId": "m1"},
    )

    assert resp.status_code == 200
    assert recording.calls == [(False, "m1")]


def test_health_probe_reads_store_in_threadpool(client, store, monkeypatch):
    seen = []
    read = store.get

    def recording_get(key):
        seen.append(_on_event_loop())
        return read(key)

    monkeypatch.setattr(store, "get", recording_get)

    resp = client.get("/api/health", params={"probe": "1", "memberId": "m1", "email": "a@b.co"})

    assert resp.status_code == 200
    assert seen and not any(seen)
