"""
Entitlement application.

Turns a confirmed-payment event into Memberstack custom-field flags, using
the intent the member registered before checkout:

1. resolve identity (member id / email) from the event payload
2. environment comes from the webhook's signing context (caller supplies it)
3. resolve the latest intent through the ledger pointers
4. skip if the intent is already applied
5. skip if the intent belongs to the other environment
6. build the full flag set from the intent's programs
7. patch the member's custom fields
8. mark the intent applied

Skips are outcomes, not errors: the webhook is acknowledged so the provider
stops redelivering an event that can never be acted on. Store and provider
failures in steps 3-7 propagate so the webhook answers 500 and the provider
redelivers. A failed write in step 8 is logged and swallowed; the patch has
already happened and re-sending it is harmless.

There is no lock across steps 3-8. Two concurrent deliveries can both pass
step 4 and patch twice; the patch overwrites a fixed field set, so the
second one has no visible effect.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from entitlement_bridge.core.logging import log_event
from entitlement_bridge.features.entitlements.flags import build_entitlement_update
from entitlement_bridge.features.intents.ledger import IntentLedger
from entitlement_bridge.features.webhooks.extract import IdentityExtractor

STATUS_APPLIED = "applied"
STATUS_SKIPPED = "skipped"

SKIP_NO_IDENTITY = "no_identity"
SKIP_NO_INTENT = "no_intent"
SKIP_ALREADY_APPLIED = "already_applied"
SKIP_ENV_MISMATCH = "env_mismatch"


@dataclass
class ApplyResult:
    status: str
    reason: Optional[str] = None
    env: Optional[str] = None
    intent_id: Optional[str] = None
    member_id: Optional[str] = None
    email: Optional[str] = None
    update: Dict[str, str] = field(default_factory=dict)
    committed: bool = False

    @property
    def applied(self) -> bool:
        return self.status == STATUS_APPLIED


class EntitlementApplier:
    def __init__(self, ledger: IntentLedger, members):
        self.ledger = ledger
        self.members = members

    def _skip(self, reason: str, *, env: str, event_type: Optional[str], **ids) -> ApplyResult:
        log_event("info", f"entitlements.skip.{reason}", env=env, event_type=event_type, extra={"reason": reason}, **ids)
        return ApplyResult(status=STATUS_SKIPPED, reason=reason, env=env, **ids)

    def apply(
        self,
        payload: Any,
        env: str,
        *,
        identity: IdentityExtractor,
        extra_fields: Optional[Dict[str, str]] = None,
        event_type: Optional[str] = None,
    ) -> ApplyResult:
        who = identity.resolve(payload)
        if who.empty:
            return self._skip(SKIP_NO_IDENTITY, env=env, event_type=event_type)

        intent = self.ledger.resolve_latest_intent(member_id=who.member_id, email=who.email, env=env)
        if intent is None:
            return self._skip(SKIP_NO_INTENT, env=env, event_type=event_type, member_id=who.member_id, email=who.email)

        ids = {"intent_id": intent.intent_id, "member_id": intent.member_id or who.member_id, "email": intent.email or who.email}

        if intent.is_applied:
            return self._skip(SKIP_ALREADY_APPLIED, env=env, event_type=event_type, **ids)

        if intent.env and intent.env != env:
            return self._skip(SKIP_ENV_MISMATCH, env=env, event_type=event_type, **ids)

        update = build_entitlement_update(intent.programs)
        for key, value in (extra_fields or {}).items():
            update.setdefault(key, value)

        self.members.patch_custom_fields(env, ids["member_id"], update)

        committed = self.ledger.mark_applied(intent.intent_id, intent)
        log_event(
            "info",
            "entitlements.applied",
            env=env,
            event_type=event_type,
            extra={"update": update, "committed": committed},
            **ids,
        )
        return ApplyResult(status=STATUS_APPLIED, env=env, update=update, committed=committed, **ids)
