"""Shared pieces of the provider webhook dispatchers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from entitlement_bridge.core.errors import StoreError
from entitlement_bridge.core.logging import log_event

PROCESSED_TTL_SECONDS = 30 * 24 * 60 * 60

OUTCOME_IGNORED = "ignored"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_DEACTIVATED = "deactivated"
OUTCOME_COPIED = "copied"
OUTCOME_BASE_ACCESS = "base_access"


@dataclass
class WebhookOutcome:
    event_id: Optional[str]
    event_type: Optional[str]
    env: str
    status: str
    reason: Optional[str] = None
    intent_id: Optional[str] = None
    member_id: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "received": True,
            "event_id": self.event_id,
            "type": self.event_type,
            "env": self.env,
            "status": self.status,
        }
        if self.reason:
            body["reason"] = self.reason
        if self.intent_id:
            body["intent_id"] = self.intent_id
        return body


def already_processed(store, key: Optional[str]) -> bool:
    if not key:
        return False
    return bool(store.get(key))


def mark_processed(store, key: Optional[str], *, env: str, event_type: Optional[str]) -> None:
    """Record a handled event. The side effect already happened, so a failed write is only logged."""
    if not key:
        return
    try:
        store.set_with_expiry(key, 1, PROCESSED_TTL_SECONDS)
    except StoreError as e:
        log_event("warning", "webhook.mark_processed_failed", env=env, event_type=event_type, error_code=e.code, extra={"key": key})
