"""
Health and diagnostics.

GET /api/health reports which configuration variables are present (never
their values). With ``probe=1`` it also shows the pointers and intent the
entitlement protocol would resolve for a member id / email.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from entitlement_bridge.api.deps import get_ledger
from entitlement_bridge.core.config import HEALTH_VARS
from entitlement_bridge.core.logging import LOGGER_NAME, get_request_id
from entitlement_bridge.features.intents.ledger import IntentLedger, normalize_email, normalize_env
from entitlement_bridge.features.intents.models import (
    DEFAULT_PARTITION,
    email_pointer_key,
    intent_key,
    member_pointer_key,
)

logger = logging.getLogger(LOGGER_NAME)

router = APIRouter(prefix="/api", tags=["health"])
root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


def _probe(ledger: IntentLedger, member_id: Optional[str], email: Optional[str], env: Optional[str]) -> Dict[str, Any]:
    tried: List[str] = []

    def read(key: str):
        tried.append(key)
        return ledger.store.get(key)

    ptr_member = read(member_pointer_key(member_id)) if member_id else None
    ptr_email = None
    if email:
        partitions = [env] if env else []
        partitions.append(DEFAULT_PARTITION)
        for partition in partitions:
            ptr_email = read(email_pointer_key(partition, email))
            if ptr_email:
                break

    pointer = ptr_member or ptr_email
    intent = read(intent_key(pointer["intentId"])) if isinstance(pointer, dict) and pointer.get("intentId") else None
    return {
        "memberId": member_id,
        "email": email,
        "ptrMember": ptr_member,
        "ptrEmail": ptr_email,
        "intent": intent,
        "tried": tried,
    }


@router.get("/health")
def health(
    probe: Optional[str] = Query(None),
    member_id: Optional[str] = Query(None, alias="memberId"),
    email: Optional[str] = Query(None),
    env: Optional[str] = Query(None),
    ledger: IntentLedger = Depends(get_ledger),
):
    body: Dict[str, Any] = {
        "ok": True,
        "env": {name: bool(os.getenv(name)) for name in HEALTH_VARS},
        "now": datetime.now(timezone.utc).isoformat(),
    }
    if probe:
        resolved_env = normalize_env(env) or "test"
        body["probe"] = _probe(ledger, (member_id or "").strip() or None, normalize_email(email), resolved_env)
        body["probe"]["env"] = resolved_env
    logger.info("health.check", extra={"request_id": get_request_id(), "env": env if probe else None})
    return body
