"""FastAPI dependencies: one configuration per request, clients built from it."""
from fastapi import Depends, Request

from entitlement_bridge.core.config import BridgeConfig, get_bridge_config
from entitlement_bridge.features.checkout.service import CheckoutService
from entitlement_bridge.features.entitlements.service import EntitlementApplier
from entitlement_bridge.features.intents.ledger import IntentLedger
from entitlement_bridge.features.members.client import MemberstackClient
from entitlement_bridge.features.store.kv import KVStore
from entitlement_bridge.features.webhooks.memberstack_events import MemberstackWebhookDispatcher
from entitlement_bridge.features.webhooks.stripe_events import StripeWebhookDispatcher


async def raw_body(request: Request) -> bytes:
    """Request body read on the event loop so the route itself can be a plain def."""
    return await request.body()


def get_store(cfg: BridgeConfig = Depends(get_bridge_config)) -> KVStore:
    return KVStore(cfg.kv_url, cfg.kv_token)


def get_members_client(cfg: BridgeConfig = Depends(get_bridge_config)) -> MemberstackClient:
    return MemberstackClient(
        cfg.memberstack_keys,
        cfg.memberstack_shared_key,
        base_url=cfg.memberstack_base,
    )


def get_ledger(
    store=Depends(get_store),
    cfg: BridgeConfig = Depends(get_bridge_config),
) -> IntentLedger:
    return IntentLedger(store, program_slugs=cfg.program_slugs)


def get_applier(
    ledger: IntentLedger = Depends(get_ledger),
    members=Depends(get_members_client),
) -> EntitlementApplier:
    return EntitlementApplier(ledger, members)


def get_stripe_dispatcher(
    store=Depends(get_store),
    applier: EntitlementApplier = Depends(get_applier),
    members=Depends(get_members_client),
) -> StripeWebhookDispatcher:
    return StripeWebhookDispatcher(store, applier, members)


def get_memberstack_dispatcher(
    store=Depends(get_store),
    applier: EntitlementApplier = Depends(get_applier),
    members=Depends(get_members_client),
) -> MemberstackWebhookDispatcher:
    return MemberstackWebhookDispatcher(store, applier, members)


def get_checkout_service(cfg: BridgeConfig = Depends(get_bridge_config)) -> CheckoutService:
    return CheckoutService(cfg)
