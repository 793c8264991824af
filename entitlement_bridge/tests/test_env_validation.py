"""Tests for environment validation and configuration loading."""

from types import SimpleNamespace

import pytest

from entitlement_bridge.core.config import Settings, load_bridge_config, missing_config
from entitlement_bridge.core.validation import EnvValidationError, validate_env


def make_settings(**overrides):
    defaults = dict(
        ENV="development",
        KV_REST_URL=None,
        KV_REST_TOKEN=None,
        MEMBERSTACK_API_KEY=None,
        MEMBERSTACK_API_KEY_LIVE=None,
        STRIPE_WEBHOOK_SECRET=None,
        STRIPE_WEBHOOK_SECRET_LIVE=None,
        MS_WEBHOOK_SECRET=None,
        MS_WEBHOOK_SECRET_LIVE=None,
    )
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


@pytest.fixture(autouse=True)
def no_skip(monkeypatch):
    monkeypatch.delenv("SKIP_ENV_VALIDATION", raising=False)


def test_valid_production_config_passes():
    settings = make_settings(
        ENV="production",
        KV_REST_URL="https://eu1-kv.upstash.io",
        KV_REST_TOKEN="tok",
        MEMBERSTACK_API_KEY_LIVE="sk_live",
        STRIPE_WEBHOOK_SECRET_LIVE="whsec_live",
    )
    assert validate_env(settings_obj=settings) is True


def test_development_allows_missing_values():
    assert validate_env(settings_obj=make_settings()) is True


def test_redis_protocol_url_rejected():
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=make_settings(KV_REST_URL="redis://default:pw@host:6379"))


@pytest.mark.parametrize(
    "drop",
    ["KV_REST_URL", "KV_REST_TOKEN", "MEMBERSTACK_API_KEY_LIVE", "STRIPE_WEBHOOK_SECRET_LIVE"],
)
def test_production_requires_core_values(drop):
    values = dict(
        ENV="production",
        KV_REST_URL="https://eu1-kv.upstash.io",
        KV_REST_TOKEN="tok",
        MEMBERSTACK_API_KEY_LIVE="sk_live",
        STRIPE_WEBHOOK_SECRET_LIVE="whsec_live",
    )
    values[drop] = None
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=make_settings(**values))


def test_skip_flag_bypasses(monkeypatch):
    monkeypatch.setenv("SKIP_ENV_VALIDATION", "1")
    assert validate_env(settings_obj=make_settings(ENV="production")) is True


def test_settings_accept_vercel_kv_names(monkeypatch):
    monkeypatch.delenv("UPSTASH_REDIS_REST_URL", raising=False)
    monkeypatch.delenv("UPSTASH_REDIS_REST_TOKEN", raising=False)
    monkeypatch.setenv("KV_REST_API_URL", "https://vercel-kv.example")
    monkeypatch.setenv("KV_REST_API_TOKEN", "vtok")

    settings = Settings(_env_file=None)

    assert settings.KV_REST_URL == "https://vercel-kv.example"
    assert settings.KV_REST_TOKEN == "vtok"


def test_bridge_config_orders_secrets_live_test_legacy():
    settings = Settings(
        _env_file=None,
        STRIPE_WEBHOOK_SECRET="whsec_legacy",
        STRIPE_WEBHOOK_SECRET_TEST="whsec_t",
        STRIPE_WEBHOOK_SECRET_LIVE="whsec_l",
        MS_WEBHOOK_SECRET="whsec_ms",
        MS_WEBHOOK_LEGACY_ENV="live",
        PROGRAM_SLUGS="Athletyx, fight ,",
    )

    cfg = load_bridge_config(settings)

    assert [(c.label, c.secret) for c in cfg.stripe_secrets] == [
        ("live", "whsec_l"),
        ("test", "whsec_t"),
        (None, "whsec_legacy"),
    ]
    assert [(c.label, c.secret) for c in cfg.memberstack_secrets] == [("live", "whsec_ms")]
    assert cfg.program_slugs == ("athletyx", "fight")


def test_stripe_key_falls_back_to_shared():
    settings = Settings(_env_file=None, STRIPE_SECRET_KEY="sk_shared", STRIPE_SECRET_KEY_LIVE="sk_live")
    cfg = load_bridge_config(settings)
    assert cfg.stripe_key_for("live") == "sk_live"
    assert cfg.stripe_key_for("test") == "sk_shared"


def test_missing_config_names_groups_only(caplog):
    from entitlement_bridge.core.config import BridgeConfig

    missing = missing_config(BridgeConfig(kv_url="https://kv", kv_token="secret-token"))
    assert "UPSTASH_REDIS_REST_URL/KV_REST_API_URL" not in missing
    assert "MEMBERSTACK_API_KEY(_LIVE|_TEST)" in missing
    assert "secret-token" not in caplog.text


@pytest.mark.parametrize("label", ["production", "Live", ""])
def test_unknown_legacy_memberstack_env_rejected(label):
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=make_settings(MS_WEBHOOK_LEGACY_ENV=label))


def test_legacy_memberstack_env_live_accepted():
    assert validate_env(settings_obj=make_settings(MS_WEBHOOK_LEGACY_ENV="live")) is True
