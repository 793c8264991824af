"""
Stripe checkout session creation.

The session carries the buyer's identity and selection as explicit metadata
(``env``, ``memberstack_id``, ``selected_programs``) so the payment webhook
never has to infer the environment from price ids.
"""
from typing import Any, Dict, List, Optional

import stripe

from entitlement_bridge.core.config import BridgeConfig
from entitlement_bridge.core.errors import ProviderError, ValidationError
from entitlement_bridge.core.logging import log_event
from entitlement_bridge.features.intents.ledger import normalize_email, normalize_env


def search_literal(value: str) -> str:
    """Quote a value for the Stripe search query language."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class CheckoutService:
    def __init__(self, cfg: BridgeConfig):
        self.cfg = cfg

    def _api_key(self, env: str) -> str:
        key = self.cfg.stripe_key_for(env)
        if not key:
            raise ProviderError(f"Missing Stripe secret key for env={env}")
        return key

    def ensure_customer(self, email: str, api_key: str) -> str:
        """Find the customer by email or create one."""
        try:
            found = stripe.Customer.search(query=f"email:{search_literal(email)}", api_key=api_key)
            if found.data:
                return found.data[0].id
            customer = stripe.Customer.create(email=email, api_key=api_key)
            return customer.id
        except stripe.StripeError as e:
            raise ProviderError(f"Stripe customer lookup failed: {e}")

    def create_session(
        self,
        *,
        line_items: List[Dict[str, Any]],
        email: Optional[str],
        member_id: Optional[str],
        selected_programs: Optional[List[str]] = None,
        coupon: Optional[str] = None,
        env: Optional[str] = None,
    ) -> Dict[str, Optional[str]]:
        if not isinstance(line_items, list) or not line_items:
            raise ValidationError("Missing required fields")
        email = normalize_email(email)
        if not email or not member_id:
            raise ValidationError("Missing required fields")
        env = normalize_env(env) or "test"
        api_key = self._api_key(env)

        programs = ",".join(str(p) for p in selected_programs or [])
        metadata = {"env": env, "memberstack_id": member_id, "selected_programs": programs}
        customer_id = self.ensure_customer(email, api_key)

        try:
            session = stripe.checkout.Session.create(
                api_key=api_key,
                mode="subscription",
                payment_method_types=["card"],
                line_items=line_items,
                discounts=[{"coupon": coupon}] if coupon else [],
                success_url=f"{self.cfg.front_url}/app/success",
                cancel_url=f"{self.cfg.front_url}/panier?status=canceled",
                client_reference_id=member_id,
                customer=customer_id,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            raise ProviderError(f"Stripe checkout session creation failed: {e}")

        log_event("info", "checkout.session_created", member_id=member_id, email=email, env=env, extra={"session_id": session.id})
        return {"id": session.id, "url": session.url}
