import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"

    # Key-value store (Upstash / Vercel KV REST)
    KV_REST_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("UPSTASH_REDIS_REST_URL", "KV_REST_API_URL"),
    )
    KV_REST_TOKEN: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("UPSTASH_REDIS_REST_TOKEN", "KV_REST_API_TOKEN"),
    )

    # Memberstack admin API
    MEMBERSTACK_API_BASE: str = "https://admin.memberstack.com"
    MEMBERSTACK_API_KEY: Optional[str] = None
    MEMBERSTACK_API_KEY_LIVE: Optional[str] = None
    MEMBERSTACK_API_KEY_TEST: Optional[str] = None

    # Memberstack webhooks (Svix signed)
    MS_WEBHOOK_SECRET: Optional[str] = None
    MS_WEBHOOK_SECRET_LIVE: Optional[str] = None
    MS_WEBHOOK_SECRET_TEST: Optional[str] = None
    MS_WEBHOOK_LEGACY_ENV: str = "test"

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_SECRET_KEY_LIVE: Optional[str] = None
    STRIPE_SECRET_KEY_TEST: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_WEBHOOK_SECRET_LIVE: Optional[str] = None
    STRIPE_WEBHOOK_SECRET_TEST: Optional[str] = None

    # Program allow-list (comma-separated slugs, empty = full table)
    PROGRAM_SLUGS: str = ""

    # Checkout redirects
    FRONT_URL: str = "https://aleopplatform.webflow.io"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


# Variables reported (presence only) by the health endpoint.
HEALTH_VARS = (
    "UPSTASH_REDIS_REST_URL",
    "KV_REST_API_URL",
    "UPSTASH_REDIS_REST_TOKEN",
    "KV_REST_API_TOKEN",
    "MEMBERSTACK_API_KEY",
    "MEMBERSTACK_API_KEY_LIVE",
    "MEMBERSTACK_API_KEY_TEST",
    "MS_WEBHOOK_SECRET",
    "MS_WEBHOOK_SECRET_LIVE",
    "MS_WEBHOOK_SECRET_TEST",
    "STRIPE_SECRET_KEY",
    "STRIPE_SECRET_KEY_LIVE",
    "STRIPE_SECRET_KEY_TEST",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_WEBHOOK_SECRET_LIVE",
    "STRIPE_WEBHOOK_SECRET_TEST",
)


@dataclass(frozen=True)
class SecretCandidate:
    """A webhook signing secret and the environment it attributes events to.

    ``label`` is None when the secret does not imply an environment (the
    legacy Stripe secret); the dispatcher then derives it from the event.
    """
    label: Optional[str]
    secret: str


@dataclass(frozen=True)
class BridgeConfig:
    """Per-request view of the configuration, passed into client constructors."""
    kv_url: Optional[str] = None
    kv_token: Optional[str] = None
    memberstack_base: str = "https://admin.memberstack.com"
    memberstack_keys: Dict[str, str] = field(default_factory=dict)
    memberstack_shared_key: Optional[str] = None
    stripe_keys: Dict[str, str] = field(default_factory=dict)
    stripe_shared_key: Optional[str] = None
    stripe_secrets: Tuple[SecretCandidate, ...] = ()
    memberstack_secrets: Tuple[SecretCandidate, ...] = ()
    program_slugs: Tuple[str, ...] = ()
    front_url: str = "https://aleopplatform.webflow.io"

    def stripe_key_for(self, env: str) -> Optional[str]:
        return self.stripe_keys.get(env) or self.stripe_shared_key


def _candidates(*pairs: Tuple[Optional[str], Optional[str]]) -> Tuple[SecretCandidate, ...]:
    # Trial order is attribution order: the first secret that verifies wins.
    return tuple(SecretCandidate(label, secret) for label, secret in pairs if secret)


def _split_slugs(raw: str) -> Tuple[str, ...]:
    return tuple(s.strip().lower() for s in (raw or "").split(",") if s.strip())


def load_bridge_config(settings_obj: Optional[Settings] = None) -> BridgeConfig:
    """Resolve a BridgeConfig from named sources (process env / .env)."""
    cfg = settings_obj or Settings()

    memberstack_keys = {
        env: key
        for env, key in (("live", cfg.MEMBERSTACK_API_KEY_LIVE), ("test", cfg.MEMBERSTACK_API_KEY_TEST))
        if key
    }
    stripe_keys = {
        env: key
        for env, key in (("live", cfg.STRIPE_SECRET_KEY_LIVE), ("test", cfg.STRIPE_SECRET_KEY_TEST))
        if key
    }

    return BridgeConfig(
        kv_url=cfg.KV_REST_URL,
        kv_token=cfg.KV_REST_TOKEN,
        memberstack_base=cfg.MEMBERSTACK_API_BASE.rstrip("/"),
        memberstack_keys=memberstack_keys,
        memberstack_shared_key=cfg.MEMBERSTACK_API_KEY,
        stripe_keys=stripe_keys,
        stripe_shared_key=cfg.STRIPE_SECRET_KEY,
        stripe_secrets=_candidates(
            ("live", cfg.STRIPE_WEBHOOK_SECRET_LIVE),
            ("test", cfg.STRIPE_WEBHOOK_SECRET_TEST),
            (None, cfg.STRIPE_WEBHOOK_SECRET),
        ),
        memberstack_secrets=_candidates(
            ("live", cfg.MS_WEBHOOK_SECRET_LIVE),
            ("test", cfg.MS_WEBHOOK_SECRET_TEST),
            (cfg.MS_WEBHOOK_LEGACY_ENV, cfg.MS_WEBHOOK_SECRET),
        ),
        program_slugs=_split_slugs(cfg.PROGRAM_SLUGS),
        front_url=cfg.FRONT_URL.rstrip("/"),
    )


def get_bridge_config() -> BridgeConfig:
    """FastAPI dependency: configuration resolved once per request."""
    return load_bridge_config()


def missing_config(cfg: BridgeConfig, logger: Optional[logging.Logger] = None) -> list:
    """List missing configuration groups (names only, never values)."""
    log = logger or logging.getLogger("entitlement_bridge")
    missing = []
    if not cfg.kv_url:
        missing.append("UPSTASH_REDIS_REST_URL/KV_REST_API_URL")
    if not cfg.kv_token:
        missing.append("UPSTASH_REDIS_REST_TOKEN/KV_REST_API_TOKEN")
    if not cfg.memberstack_keys and not cfg.memberstack_shared_key:
        missing.append("MEMBERSTACK_API_KEY(_LIVE|_TEST)")
    if not cfg.stripe_secrets and not cfg.memberstack_secrets:
        missing.append("STRIPE_WEBHOOK_SECRET(_LIVE|_TEST)/MS_WEBHOOK_SECRET(_LIVE|_TEST)")
    if missing:
        log.warning(f"Missing configuration: {', '.join(missing)}")
    return missing
