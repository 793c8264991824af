"""Payment webhook end to end through the API with fake store and Memberstack."""

from fakes import STRIPE_LIVE, STRIPE_TEST, as_body, stripe_headers

from entitlement_bridge.features.intents.models import intent_key


def _checkout_event(event_id="evt_1", member_id="m1", email=None, livemode=False, customer="cus_1"):
    obj = {
        "object": "checkout.session",
        "customer": customer,
        "client_reference_id": member_id,
        "metadata": {"memberstack_id": member_id} if member_id else {},
    }
    if email:
        obj["customer_details"] = {"email": email}
    return {"id": event_id, "type": "checkout.session.completed", "livemode": livemode, "data": {"object": obj}}


def _post(client, event, secret=STRIPE_TEST, path="/api/stripe-webhook"):
    body = as_body(event)
    return client.post(path, content=body, headers=stripe_headers(body, secret))


def test_checkout_completed_applies_intent(client, ledger, store, members):
    intent_id = ledger.create_intent("m1", ["athletyx", "booty-shape"], env="test")

    resp = _post(client, _checkout_event())

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "applied"
    assert body["env"] == "test"
    assert body["intent_id"] == intent_id
    assert members.patches[0][0] == "test"
    assert members.patches[0][2]["booty"] == "1"
    assert store.data[intent_key(intent_id)]["status"] == "applied"
    assert store.data["processed:test:evt_1"] == 1
    assert store.data["map:scus:test:cus_1"] == {"memberId": "m1", "email": None}


def test_redelivered_event_acknowledged_without_patch(client, ledger, members):
    ledger.create_intent("m1", ["athletyx"], env="test")
    _post(client, _checkout_event())

    resp = _post(client, _checkout_event())

    assert resp.status_code == 200
    assert resp.json()["status"] == "duplicate"
    assert len(members.patches) == 1


def test_second_event_for_applied_intent_is_skipped(client, ledger, members):
    ledger.create_intent("m1", ["athletyx"], env="test")
    _post(client, _checkout_event(event_id="evt_1"))

    resp = _post(client, {**_checkout_event(event_id="evt_2"), "type": "invoice.paid"})

    assert resp.status_code == 200
    assert resp.json()["reason"] == "already_applied"
    assert len(members.patches) == 1


def test_unknown_member_is_skipped(client, members, store):
    resp = _post(client, _checkout_event(member_id="ghost"))

    assert resp.status_code == 200
    assert resp.json()["reason"] == "no_intent"
    assert members.patches == []
    # Skips leave no marker so a later redelivery can still apply
    assert "processed:test:evt_1" not in store.data


def test_live_secret_never_applies_test_intent(client, ledger, members):
    ledger.create_intent("m1", ["athletyx"], env="test")

    resp = _post(client, _checkout_event(livemode=True), secret=STRIPE_LIVE)

    assert resp.json()["env"] == "live"
    assert resp.json()["reason"] == "env_mismatch"
    assert members.patches == []


def test_irrelevant_event_ignored(client, members):
    resp = _post(client, {"id": "evt_9", "type": "charge.refunded", "data": {"object": {"metadata": {"memberstack_id": "m1"}}}})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"
    assert members.patches == []


def test_bad_signature_is_400(client, members):
    body = as_body(_checkout_event())
    resp = client.post("/api/stripe-webhook", content=body, headers=stripe_headers(body, "whsec_wrong"))
    assert resp.status_code == 400
    payload = resp.json()
    assert payload["ok"] is False
    assert payload["code"] == "auth_error"
    assert payload["request_id"] == resp.headers["x-request-id"]


def test_provider_failure_is_500_and_retryable(client, ledger, members, store):
    from entitlement_bridge.core.errors import ProviderError

    intent_id = ledger.create_intent("m1", ["athletyx"], env="test")
    members.patch_error = ProviderError("Memberstack update 503: down", status=503)

    resp = _post(client, _checkout_event())

    assert resp.status_code == 500
    assert resp.json()["code"] == "provider_error"
    assert "processed:test:evt_1" not in store.data
    assert store.data[intent_key(intent_id)]["status"] == "pending"

    members.patch_error = None
    retry = _post(client, _checkout_event())
    assert retry.json()["status"] == "applied"


def test_legacy_path_alias(client, ledger, members):
    ledger.create_intent("m1", ["fight"], env="test")
    resp = _post(client, _checkout_event(), path="/api/webhook-stripe")
    assert resp.status_code == 200
    assert resp.json()["status"] == "applied"


def test_subscription_deleted_resets_flags_via_customer_map(client, ledger, members, store):
    ledger.create_intent("m1", ["athletyx"], env="test")
    _post(client, _checkout_event())

    deleted = {
        "id": "evt_del",
        "type": "customer.subscription.deleted",
        "livemode": False,
        "data": {"object": {"object": "subscription", "customer": "cus_1", "metadata": {}}},
    }
    resp = _post(client, deleted)

    assert resp.json()["status"] == "deactivated"
    env, member_id, fields = members.patches[-1]
    assert (env, member_id) == ("test", "m1")
    assert set(fields.values()) == {"0"}
    assert store.data["processed:test:evt_del"] == 1


def test_subscription_deleted_falls_back_to_email_lookup(client, members):
    members.add("m5", email="old@shop.io", athletyx="1")
    deleted = {
        "id": "evt_del2",
        "type": "customer.subscription.deleted",
        "data": {"object": {"customer": "cus_unknown", "customer_email": "old@shop.io"}},
    }

    resp = _post(client, deleted)

    assert resp.json()["status"] == "deactivated"
    assert members.members["m5"]["customFields"]["athletyx"] == "0"


def test_no_configured_secret_is_500(client, bridge_config):
    from dataclasses import replace

    from entitlement_bridge.core.config import get_bridge_config
    from entitlement_bridge.main import app

    app.dependency_overrides[get_bridge_config] = lambda: replace(bridge_config, stripe_secrets=())
    body = as_body(_checkout_event())
    resp = client.post("/api/stripe-webhook", content=body, headers=stripe_headers(body, STRIPE_TEST))
    assert resp.status_code == 500
    assert resp.json()["code"] == "config_error"
