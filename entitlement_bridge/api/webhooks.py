"""
Provider webhooks.

- POST /api/stripe-webhook      (alias /api/webhook-stripe)
- POST /api/memberstack-webhook (aliases /api/MS-webhook, /api/ms-webhook)
- POST /api/member-updated      drain, always 200

Responses: 200 once the event is verified and either handled or found
irrelevant; 400 on signature failure; 500 when a relevant event could not
be applied (the provider redelivers).
"""
from fastapi import APIRouter, Depends, Request

from entitlement_bridge.api.deps import get_memberstack_dispatcher, get_stripe_dispatcher, raw_body
from entitlement_bridge.core.config import BridgeConfig, get_bridge_config
from entitlement_bridge.core.logging import log_event
from entitlement_bridge.features.webhooks.memberstack_events import MemberstackWebhookDispatcher
from entitlement_bridge.features.webhooks.stripe_events import StripeWebhookDispatcher

router = APIRouter(prefix="/api", tags=["webhooks"])


@router.post("/stripe-webhook")
@router.post("/webhook-stripe", include_in_schema=False)
def stripe_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    cfg: BridgeConfig = Depends(get_bridge_config),
    dispatcher: StripeWebhookDispatcher = Depends(get_stripe_dispatcher),
):
    outcome = dispatcher.handle(body, request.headers, cfg.stripe_secrets)
    return outcome.to_response()


@router.post("/memberstack-webhook")
@router.post("/MS-webhook", include_in_schema=False)
@router.post("/ms-webhook", include_in_schema=False)
def memberstack_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    cfg: BridgeConfig = Depends(get_bridge_config),
    dispatcher: MemberstackWebhookDispatcher = Depends(get_memberstack_dispatcher),
):
    outcome = dispatcher.handle(body, request.headers, cfg.memberstack_secrets)
    return outcome.to_response()


@router.post("/member-updated")
async def member_updated(request: Request):
    body = await request.body()
    log_event("info", "member_updated.drained", extra={"bytes": len(body)})
    return {"received": True}
