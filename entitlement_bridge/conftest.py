# entitlement_bridge/conftest.py
import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("SKIP_ENV_VALIDATION", "1")

# Test helpers (fakes.py) live next to the tests
TESTS_DIR = Path(__file__).resolve().parent / "tests"
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from fakes import MS_LIVE, MS_TEST, STRIPE_LIVE, STRIPE_TEST, FakeMembers, FakeStore  # noqa: E402

from entitlement_bridge.core.config import BridgeConfig, SecretCandidate  # noqa: E402
from entitlement_bridge.features.entitlements.service import EntitlementApplier  # noqa: E402
from entitlement_bridge.features.intents.ledger import IntentLedger  # noqa: E402


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def members():
    return FakeMembers()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def ledger(store, sleeps):
    return IntentLedger(store, sleep=sleeps.append)


@pytest.fixture
def applier(ledger, members):
    return EntitlementApplier(ledger, members)


@pytest.fixture
def bridge_config():
    return BridgeConfig(
        kv_url="https://kv.example.test",
        kv_token="kv-token",
        memberstack_keys={"live": "sk_live_ms", "test": "sk_test_ms"},
        stripe_keys={"live": "sk_live_stripe", "test": "sk_test_stripe"},
        stripe_secrets=(
            SecretCandidate("live", STRIPE_LIVE),
            SecretCandidate("test", STRIPE_TEST),
        ),
        memberstack_secrets=(
            SecretCandidate("live", MS_LIVE),
            SecretCandidate("test", MS_TEST),
        ),
    )


@pytest.fixture
def client(store, members, bridge_config):
    """TestClient with the store, Memberstack client and config replaced by fakes."""
    from fastapi.testclient import TestClient

    from entitlement_bridge.api import deps
    from entitlement_bridge.core.config import get_bridge_config
    from entitlement_bridge.main import app

    app.dependency_overrides[get_bridge_config] = lambda: bridge_config
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_members_client] = lambda: members
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
