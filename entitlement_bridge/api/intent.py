"""
Intent registration.

POST /api/intent
  {env?, memberId, email?, programs: [...], priceId?, createdAt?}
  -> 200 {"ok": true, "intentId": "i_..."}
  -> 400 / 500 {"ok": false, "error": "..."}
"""
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from entitlement_bridge.api.deps import get_ledger
from entitlement_bridge.features.intents.ledger import IntentLedger

router = APIRouter(prefix="/api", tags=["intent"])


class IntentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    env: Optional[str] = None
    member_id: Optional[str] = Field(default=None, alias="memberId")
    email: Optional[str] = None
    programs: List[Any] = Field(default_factory=list)
    price_id: Optional[str] = Field(default=None, alias="priceId")
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class IntentResponse(BaseModel):
    ok: bool
    intentId: str


@router.post("/intent", response_model=IntentResponse)
def create_intent(request: IntentRequest, ledger: IntentLedger = Depends(get_ledger)):
    intent_id = ledger.create_intent(
        request.member_id,
        request.programs,
        email=request.email,
        env=request.env,
        price_id=request.price_id,
        created_at=request.created_at,
    )
    return {"ok": True, "intentId": intent_id}
