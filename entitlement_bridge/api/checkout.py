"""POST /api/create-checkout-session -> {"id", "url"}."""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from entitlement_bridge.api.deps import get_checkout_service
from entitlement_bridge.features.checkout.service import CheckoutService

router = APIRouter(prefix="/api", tags=["checkout"])


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    env: Optional[str] = None
    line_items: List[Dict[str, Any]] = Field(default_factory=list, alias="lineItems")
    coupon: Optional[str] = None
    selected_programs: List[str] = Field(default_factory=list, alias="selectedPrograms")
    email: Optional[str] = None
    member_id: Optional[str] = Field(default=None, alias="memberId")


class CheckoutResponse(BaseModel):
    id: str
    url: Optional[str] = None


@router.post("/create-checkout-session", response_model=CheckoutResponse)
def create_checkout_session(request: CheckoutRequest, service: CheckoutService = Depends(get_checkout_service)):
    return service.create_session(
        line_items=request.line_items,
        email=request.email,
        member_id=request.member_id,
        selected_programs=request.selected_programs,
        coupon=request.coupon,
        env=request.env,
    )
