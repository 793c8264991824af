"""
Stripe webhook dispatcher.

- checkout.session.completed, invoice.paid: run the entitlement application
  for the paying member; remember Stripe customer -> member.
- customer.subscription.deleted: reset every entitlement flag.
- anything else: acknowledged, no-op.

Environment: label of the secret that verified the event; the legacy
unlabelled secret falls back to the event's ``livemode`` flag.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from entitlement_bridge.core.config import SecretCandidate
from entitlement_bridge.core.errors import StoreError
from entitlement_bridge.core.logging import log_event
from entitlement_bridge.features.entitlements.flags import reset_update
from entitlement_bridge.features.entitlements.service import STATUS_SKIPPED, EntitlementApplier
from entitlement_bridge.features.webhooks.dispatch import (
    OUTCOME_DEACTIVATED,
    OUTCOME_DUPLICATE,
    OUTCOME_IGNORED,
    PROCESSED_TTL_SECONDS,
    WebhookOutcome,
    already_processed,
    mark_processed,
)
from entitlement_bridge.features.webhooks.extract import STRIPE_IDENTITY, get_path
from entitlement_bridge.features.webhooks.signatures import StripeVerifier, VerifiedEvent, verify_ordered

ACTIVATE_EVENTS = frozenset({"checkout.session.completed", "invoice.paid"})
DEACTIVATE_EVENTS = frozenset({"customer.subscription.deleted"})


def resolve_stripe_env(verified: VerifiedEvent) -> str:
    if verified.label:
        return verified.label
    return "live" if verified.event.get("livemode") else "test"


def customer_map_key(env: str, customer_id: str) -> str:
    return f"map:scus:{env}:{customer_id}"


def _customer_id(obj: Dict[str, Any]) -> Optional[str]:
    customer = obj.get("customer") or obj.get("customer_id")
    if isinstance(customer, dict):
        customer = customer.get("id")
    return customer if isinstance(customer, str) and customer else None


class StripeWebhookDispatcher:
    def __init__(self, store, applier: EntitlementApplier, members, verifier: Optional[StripeVerifier] = None):
        self.store = store
        self.applier = applier
        self.members = members
        self.verifier = verifier or StripeVerifier()

    def handle(self, body: bytes, headers: Mapping[str, str], candidates: Sequence[SecretCandidate]) -> WebhookOutcome:
        verified = verify_ordered(body, headers, candidates, self.verifier)
        env = resolve_stripe_env(verified)
        event = verified.event
        event_type = event.get("type")
        event_id = event.get("id")
        obj = get_path(event, "data.object")
        if not isinstance(obj, dict):
            obj = {}

        log_event("info", "stripe.webhook", env=env, event_type=event_type, extra={"event_id": event_id, "livemode": event.get("livemode")})

        if event_type not in ACTIVATE_EVENTS and event_type not in DEACTIVATE_EVENTS:
            return WebhookOutcome(event_id, event_type, env, OUTCOME_IGNORED)

        marker = f"processed:{env}:{event_id}" if event_id else None
        if already_processed(self.store, marker):
            return WebhookOutcome(event_id, event_type, env, OUTCOME_DUPLICATE)

        if event_type in ACTIVATE_EVENTS:
            result = self.applier.apply(obj, env, identity=STRIPE_IDENTITY, event_type=event_type)
            if not result.applied:
                return WebhookOutcome(event_id, event_type, env, result.status, result.reason, result.intent_id, result.member_id)
            self._remember_customer(env, obj, result.member_id, result.email)
            mark_processed(self.store, marker, env=env, event_type=event_type)
            return WebhookOutcome(event_id, event_type, env, result.status, None, result.intent_id, result.member_id)

        member_id = self._member_for_customer(env, obj)
        if not member_id:
            log_event("info", "stripe.deactivate.skip", env=env, event_type=event_type, extra={"reason": "member_not_resolved"})
            return WebhookOutcome(event_id, event_type, env, STATUS_SKIPPED, "member_not_resolved")
        update = reset_update()
        self.members.patch_custom_fields(env, member_id, update)
        log_event("info", "stripe.deactivated", env=env, member_id=member_id, event_type=event_type, extra={"update": update})
        mark_processed(self.store, marker, env=env, event_type=event_type)
        return WebhookOutcome(event_id, event_type, env, OUTCOME_DEACTIVATED, member_id=member_id)

    def _remember_customer(self, env: str, obj: Dict[str, Any], member_id: Optional[str], email: Optional[str]) -> None:
        customer_id = _customer_id(obj)
        if not customer_id or not member_id:
            return
        try:
            self.store.set_with_expiry(
                customer_map_key(env, customer_id),
                {"memberId": member_id, "email": email},
                PROCESSED_TTL_SECONDS,
            )
        except StoreError as e:
            log_event("warning", "stripe.customer_map_failed", env=env, member_id=member_id, error_code=e.code)

    def _member_for_customer(self, env: str, obj: Dict[str, Any]) -> Optional[str]:
        customer_id = _customer_id(obj)
        if customer_id:
            mapped = self.store.get(customer_map_key(env, customer_id))
            if isinstance(mapped, dict) and mapped.get("memberId"):
                return str(mapped["memberId"])
        who = STRIPE_IDENTITY.resolve(obj)
        if who.member_id:
            return who.member_id
        if who.email:
            return self.members.find_member_id_by_email(env, who.email)
        return None
