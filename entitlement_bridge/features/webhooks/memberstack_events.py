"""
Memberstack (Svix-signed) webhook dispatcher.

Events come as ``{"event"|"type": ..., "payload"|"data": {...}}``. The
environment is the label of the secret that verified the delivery.

- member.plan.added: seat-tier plans only, any other plan is skipped.
  Entitlement application with the team-owner fields added to the same
  patch; without a registered intent only the team-owner fields are set.
- team.member.added: the new member gets a copy of the owner's program
  flags with ``teamowner="0"``.
- team.member.removed: every program flag and ``teamowner`` set to "0".
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from entitlement_bridge.core.config import SecretCandidate
from entitlement_bridge.core.errors import ProviderError
from entitlement_bridge.core.logging import log_event
from entitlement_bridge.features.entitlements.flags import (
    FIELD_IDS,
    TEAM_OWNER_FIELD,
    reset_update,
    seat_fields,
)
from entitlement_bridge.features.entitlements.service import (
    SKIP_NO_INTENT,
    STATUS_APPLIED,
    STATUS_SKIPPED,
    EntitlementApplier,
)
from entitlement_bridge.features.webhooks.dispatch import (
    OUTCOME_BASE_ACCESS,
    OUTCOME_COPIED,
    OUTCOME_DEACTIVATED,
    OUTCOME_DUPLICATE,
    OUTCOME_IGNORED,
    WebhookOutcome,
    already_processed,
    mark_processed,
)
from entitlement_bridge.features.webhooks.extract import MEMBERSTACK_IDENTITY, get_path, path_extractor
from entitlement_bridge.features.webhooks.signatures import SvixVerifier, header_value, verify_ordered

PLAN_ADDED = "member.plan.added"
TEAM_MEMBER_ADDED = "team.member.added"
TEAM_MEMBER_REMOVED = "team.member.removed"

HANDLED_EVENTS = frozenset({PLAN_ADDED, TEAM_MEMBER_ADDED, TEAM_MEMBER_REMOVED})

SKIP_PLAN_NOT_ELIGIBLE = "plan_not_eligible"

plan_id_of = path_extractor("plan.id", "planId", "newPlan.id", "plan.planId")
owner_id_of = path_extractor("ownerId", "owner.id", "team.ownerId")
team_member_id_of = path_extractor("memberId", "member.id")


def event_parts(event: Dict[str, Any]):
    event_type = event.get("type") or event.get("event")
    data = event.get("data")
    if not isinstance(data, dict):
        data = event.get("payload")
    return event_type, data if isinstance(data, dict) else {}


def team_copy_update(owner_fields: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """Owner's program flags with teamowner forced to "0"; None if the owner is not eligible."""
    if str(owner_fields.get(TEAM_OWNER_FIELD)) != "1":
        return None
    update = {field: "1" if str(owner_fields.get(field)) == "1" else "0" for field in FIELD_IDS}
    if "1" not in update.values():
        return None
    update[TEAM_OWNER_FIELD] = "0"
    return update


class MemberstackWebhookDispatcher:
    def __init__(self, store, applier: EntitlementApplier, members, verifier: Optional[SvixVerifier] = None):
        self.store = store
        self.applier = applier
        self.members = members
        self.verifier = verifier or SvixVerifier()

    def handle(self, body: bytes, headers: Mapping[str, str], candidates: Sequence[SecretCandidate]) -> WebhookOutcome:
        verified = verify_ordered(body, headers, candidates, self.verifier)
        env = verified.label or "test"
        event = verified.event
        event_type, data = event_parts(event)
        event_id = event.get("id") or header_value(headers, "svix-id", "webhook-id")

        log_event("info", "memberstack.webhook", env=env, event_type=event_type, extra={"event_id": event_id})

        if event_type not in HANDLED_EVENTS:
            return WebhookOutcome(event_id, event_type, env, OUTCOME_IGNORED)

        marker = f"ms-processed:{env}:{event_id}" if event_id else None
        if already_processed(self.store, marker):
            return WebhookOutcome(event_id, event_type, env, OUTCOME_DUPLICATE)

        if event_type == PLAN_ADDED:
            outcome = self._plan_added(event_id, env, data)
        elif event_type == TEAM_MEMBER_ADDED:
            outcome = self._team_member_added(event_id, env, data)
        else:
            outcome = self._team_member_removed(event_id, env, data)

        if outcome.status in (OUTCOME_COPIED, OUTCOME_DEACTIVATED, STATUS_APPLIED):
            mark_processed(self.store, marker, env=env, event_type=event_type)
        return outcome

    def _plan_added(self, event_id, env: str, data: Dict[str, Any]) -> WebhookOutcome:
        plan_id = plan_id_of(data)
        extras = seat_fields(plan_id)
        if not extras:
            log_event("info", "memberstack.plan.skip", env=env, event_type=PLAN_ADDED, extra={"reason": SKIP_PLAN_NOT_ELIGIBLE, "plan_id": plan_id})
            return WebhookOutcome(event_id, PLAN_ADDED, env, STATUS_SKIPPED, SKIP_PLAN_NOT_ELIGIBLE)

        result = self.applier.apply(
            data, env, identity=MEMBERSTACK_IDENTITY, extra_fields=extras, event_type=PLAN_ADDED
        )
        if result.reason == SKIP_NO_INTENT and result.member_id:
            # Seat plan bought without a registered selection: team access only.
            self.members.patch_custom_fields(env, result.member_id, extras)
            log_event("info", "memberstack.plan.base_access", env=env, member_id=result.member_id, event_type=PLAN_ADDED, extra={"update": extras})
            return WebhookOutcome(event_id, PLAN_ADDED, env, OUTCOME_BASE_ACCESS, member_id=result.member_id)
        return WebhookOutcome(event_id, PLAN_ADDED, env, result.status, result.reason, result.intent_id, result.member_id)

    def _team_member_added(self, event_id, env: str, data: Dict[str, Any]) -> WebhookOutcome:
        member_id = team_member_id_of(data)
        owner_id = owner_id_of(data)
        if not member_id or not owner_id:
            log_event("info", "memberstack.team.skip", env=env, member_id=member_id, event_type=TEAM_MEMBER_ADDED, extra={"reason": "missing_ids"})
            return WebhookOutcome(event_id, TEAM_MEMBER_ADDED, env, STATUS_SKIPPED, "missing_ids")

        try:
            owner = self.members.get_member(env, owner_id)
        except ProviderError as e:
            if e.status != 404:
                raise
            owner = None
        owner_fields = (owner or {}).get("customFields") or {}
        update = team_copy_update(owner_fields) if isinstance(owner_fields, dict) else None
        if update is None:
            log_event(
                "warning",
                "memberstack.team.owner_ineligible",
                env=env,
                member_id=member_id,
                event_type=TEAM_MEMBER_ADDED,
                extra={"owner_id": owner_id, "team_id": get_path(data, "teamId"), "reason": "owner_ineligible"},
            )
            return WebhookOutcome(event_id, TEAM_MEMBER_ADDED, env, STATUS_SKIPPED, "owner_ineligible", member_id=member_id)

        self.members.patch_custom_fields(env, member_id, update)
        log_event("info", "memberstack.team.copied", env=env, member_id=member_id, event_type=TEAM_MEMBER_ADDED, extra={"owner_id": owner_id, "update": update})
        return WebhookOutcome(event_id, TEAM_MEMBER_ADDED, env, OUTCOME_COPIED, member_id=member_id)

    def _team_member_removed(self, event_id, env: str, data: Dict[str, Any]) -> WebhookOutcome:
        member_id = team_member_id_of(data)
        if not member_id:
            return WebhookOutcome(event_id, TEAM_MEMBER_REMOVED, env, STATUS_SKIPPED, "missing_ids")
        update = reset_update()
        update[TEAM_OWNER_FIELD] = "0"
        self.members.patch_custom_fields(env, member_id, update)
        log_event("info", "memberstack.team.removed", env=env, member_id=member_id, event_type=TEAM_MEMBER_REMOVED, extra={"update": update})
        return WebhookOutcome(event_id, TEAM_MEMBER_REMOVED, env, OUTCOME_DEACTIVATED, member_id=member_id)
