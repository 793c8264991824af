"""
Environment validation utilities.

Ensures the service fails fast on misconfiguration in production while
remaining bypassable for tests via SKIP_ENV_VALIDATION.
"""

import os
from typing import Optional
from urllib.parse import urlparse

from entitlement_bridge.core.config import Settings
from entitlement_bridge.features.intents.models import ENVIRONMENTS


class EnvValidationError(RuntimeError):
    """Raised when environment validation fails."""


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme in ("http", "https") and parsed.netloc)


def _any(source: object, *names: str) -> bool:
    return any(getattr(source, name, None) for name in names)


def validate_env(env: Optional[str] = None, settings_obj=None) -> bool:
    """Validate environment configuration.

    Args:
        env: Override environment name (defaults to settings.ENV)
        settings_obj: Override settings object (defaults to a fresh Settings())

    Returns:
        True if validation passes.

    Raises:
        EnvValidationError when a rule is violated.
    """
    if os.getenv("SKIP_ENV_VALIDATION") == "1":
        return True

    cfg = settings_obj or Settings()
    mode = (env or getattr(cfg, "ENV", "development") or "development").lower()
    kv_url = getattr(cfg, "KV_REST_URL", None)

    # The store is REST-only; a redis:// URL is a common misconfiguration
    if kv_url and not _is_valid_url(kv_url):
        raise EnvValidationError("KV REST URL must be an http(s) URL (UPSTASH_REDIS_REST_URL / KV_REST_API_URL)")

    legacy_env = getattr(cfg, "MS_WEBHOOK_LEGACY_ENV", "test")
    if legacy_env not in ENVIRONMENTS:
        raise EnvValidationError(f"MS_WEBHOOK_LEGACY_ENV must be one of {', '.join(ENVIRONMENTS)}, got {legacy_env!r}")

    if mode != "production":
        return True

    if not kv_url or not getattr(cfg, "KV_REST_TOKEN", None):
        raise EnvValidationError("KV REST URL and token are required in production")
    if not _any(cfg, "MEMBERSTACK_API_KEY", "MEMBERSTACK_API_KEY_LIVE"):
        raise EnvValidationError("MEMBERSTACK_API_KEY_LIVE (or MEMBERSTACK_API_KEY) is required in production")
    if not _any(
        cfg,
        "STRIPE_WEBHOOK_SECRET",
        "STRIPE_WEBHOOK_SECRET_LIVE",
        "MS_WEBHOOK_SECRET",
        "MS_WEBHOOK_SECRET_LIVE",
    ):
        raise EnvValidationError("At least one live webhook signing secret is required in production")

    return True
