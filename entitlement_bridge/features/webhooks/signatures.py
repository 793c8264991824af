"""
Webhook authenticity verification against an ordered list of secrets.

Each configured secret carries the environment label it attributes events
to. Secrets are tried in order (live, test, legacy) and the first one that
verifies decides the environment. Two secrets verifying the same payload
should not happen; if it does, trial order is the tie-breaker.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

import stripe

from entitlement_bridge.core.config import SecretCandidate
from entitlement_bridge.core.errors import AppError, AuthError
from entitlement_bridge.core.logging import LOGGER_NAME


DEFAULT_TOLERANCE_SECONDS = 300

logger = logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True)
class VerifiedEvent:
    label: Optional[str]
    event: Dict[str, Any]


def header_value(headers: Mapping[str, str], *names: str) -> Optional[str]:
    lowered = {str(k).lower(): v for k, v in headers.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value:
            return value
    return None


class SvixVerifier:
    """Svix scheme (Memberstack): HMAC-SHA256 over ``id.timestamp.body``."""

    name = "svix"

    def __init__(self, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS, now=time.time):
        self.tolerance_seconds = tolerance_seconds
        self._now = now

    def signature_headers(self, headers: Mapping[str, str]) -> Dict[str, str]:
        found = {
            "id": header_value(headers, "svix-id", "webhook-id"),
            "timestamp": header_value(headers, "svix-timestamp", "webhook-timestamp"),
            "signature": header_value(headers, "svix-signature", "webhook-signature"),
        }
        if not all(found.values()):
            raise AuthError("Missing Svix headers")
        try:
            ts = int(found["timestamp"])
        except ValueError:
            raise AuthError("Invalid Svix timestamp")
        if abs(int(self._now()) - ts) > self.tolerance_seconds:
            raise AuthError("Svix timestamp outside tolerance")
        return found

    @staticmethod
    def sign(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
        encoded = secret[len("whsec_"):] if secret.startswith("whsec_") else secret
        key = base64.b64decode(encoded)
        signed_content = f"{msg_id}.{timestamp}.".encode() + body
        digest = hmac.new(key, signed_content, hashlib.sha256).digest()
        return "v1," + base64.b64encode(digest).decode()

    def matches(self, body: bytes, parts: Dict[str, str], secret: str) -> bool:
        try:
            expected = self.sign(secret, parts["id"], parts["timestamp"], body)
        except (binascii.Error, ValueError):
            logger.warning("webhook.secret_not_base64", extra={"reason": "svix secret could not be decoded"})
            return False
        # Header may hold several space-separated "v1,<sig>" entries during rotation.
        for provided in parts["signature"].split(" "):
            if provided and hmac.compare_digest(provided.strip(), expected):
                return True
        return False


class StripeVerifier:
    """Stripe scheme, checked by the stripe library."""

    name = "stripe"

    def __init__(self, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS):
        self.tolerance_seconds = tolerance_seconds

    def signature_headers(self, headers: Mapping[str, str]) -> Dict[str, str]:
        signature = header_value(headers, "stripe-signature")
        if not signature:
            raise AuthError("Missing stripe-signature header")
        return {"signature": signature}

    def matches(self, body: bytes, parts: Dict[str, str], secret: str) -> bool:
        try:
            stripe.WebhookSignature.verify_header(
                body.decode("utf-8"), parts["signature"], secret, self.tolerance_seconds
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError):
            return False
        return True


def verify_ordered(
    body: bytes,
    headers: Mapping[str, str],
    candidates: Sequence[SecretCandidate],
    verifier,
) -> VerifiedEvent:
    """Try each secret in order; return the first verifying label and the parsed event.

    Raises:
        AuthError: headers missing, or no secret verifies, or body is not JSON
        AppError: no secret configured at all (server misconfiguration, 500)
    """
    if not candidates:
        raise AppError(f"No {verifier.name} webhook secret configured", code="config_error", status_code=500)

    parts = verifier.signature_headers(headers)
    for candidate in candidates:
        if not verifier.matches(body, parts, candidate.secret):
            continue
        try:
            event = json.loads(body.decode("utf-8") or "{}")
        except ValueError:
            raise AuthError("Invalid payload")
        if not isinstance(event, dict):
            raise AuthError("Invalid payload")
        return VerifiedEvent(label=candidate.label, event=event)

    raise AuthError(f"Invalid {verifier.name} signature for every configured secret")
