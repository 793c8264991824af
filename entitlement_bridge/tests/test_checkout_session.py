from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import stripe

from entitlement_bridge.core.errors import ProviderError
from entitlement_bridge.features.checkout.service import CheckoutService, search_literal


@pytest.fixture
def stripe_api(monkeypatch):
    api = SimpleNamespace(
        search=Mock(return_value=SimpleNamespace(data=[])),
        create_customer=Mock(return_value=SimpleNamespace(id="cus_new")),
        create_session=Mock(return_value=SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")),
    )
    monkeypatch.setattr(stripe.Customer, "search", api.search)
    monkeypatch.setattr(stripe.Customer, "create", api.create_customer)
    monkeypatch.setattr(stripe.checkout.Session, "create", api.create_session)
    return api


def _request(**overrides):
    body = {
        "env": "test",
        "lineItems": [{"price": "price_1", "quantity": 1}],
        "selectedPrograms": ["athletyx", "fight"],
        "email": "buyer@shop.io",
        "memberId": "mem_1",
    }
    body.update(overrides)
    return body


def test_checkout_session_carries_identity_metadata(client, stripe_api):
    resp = client.post("/api/create-checkout-session", json=_request(coupon="SPRING"))

    assert resp.status_code == 200
    assert resp.json() == {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"}

    kwargs = stripe_api.create_session.call_args.kwargs
    assert kwargs["api_key"] == "sk_test_stripe"
    assert kwargs["mode"] == "subscription"
    assert kwargs["customer"] == "cus_new"
    assert kwargs["client_reference_id"] == "mem_1"
    assert kwargs["discounts"] == [{"coupon": "SPRING"}]
    expected = {"env": "test", "memberstack_id": "mem_1", "selected_programs": "athletyx,fight"}
    assert kwargs["metadata"] == expected
    assert kwargs["subscription_data"] == {"metadata": expected}
    assert kwargs["success_url"].endswith("/app/success")


def test_existing_customer_is_reused(client, stripe_api):
    stripe_api.search.return_value = SimpleNamespace(data=[SimpleNamespace(id="cus_old")])

    client.post("/api/create-checkout-session", json=_request(env="live"))

    stripe_api.create_customer.assert_not_called()
    kwargs = stripe_api.create_session.call_args.kwargs
    assert kwargs["customer"] == "cus_old"
    assert kwargs["api_key"] == "sk_live_stripe"
    assert stripe_api.search.call_args.kwargs["query"] == 'email:"buyer@shop.io"'


@pytest.mark.parametrize("missing", ["lineItems", "email", "memberId"])
def test_missing_fields_are_400(client, stripe_api, missing):
    body = _request()
    body.pop(missing)
    resp = client.post("/api/create-checkout-session", json=body)
    assert resp.status_code == 400
    stripe_api.create_session.assert_not_called()


def test_stripe_error_becomes_provider_error(stripe_api):
    from entitlement_bridge.core.config import BridgeConfig

    stripe_api.create_session.side_effect = stripe.InvalidRequestError("No such price", param="line_items")
    service = CheckoutService(BridgeConfig(stripe_keys={"test": "sk_test_x"}))

    with pytest.raises(ProviderError):
        service.create_session(line_items=[{"price": "p"}], email="a@b.co", member_id="m1")


def test_missing_stripe_key_is_provider_error():
    from entitlement_bridge.core.config import BridgeConfig

    with pytest.raises(ProviderError):
        CheckoutService(BridgeConfig()).create_session(line_items=[{"price": "p"}], email="a@b.co", member_id="m1", env="live")


def test_search_literal_escapes_quotes_and_backslashes():
    assert search_literal("a@b.co") == '"a@b.co"'
    assert search_literal('x" OR email:"y@z.co') == '"x\\" OR email:\\"y@z.co"'
    assert search_literal("a\\b@c.co") == '"a\\\\b@c.co"'


def test_quoted_email_cannot_widen_customer_search(client, stripe_api):
    client.post("/api/create-checkout-session", json=_request(email='x" OR email:"victim@shop.io'))

    query = stripe_api.search.call_args.kwargs["query"]
    assert query == 'email:"x\\" or email:\\"victim@shop.io"'
