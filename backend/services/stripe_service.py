"""Stripe Service - Checkout session creation for proposals.

The pricing engine decides what the first charge is (CheckoutRequest); this
service only turns that into a Stripe Checkout Session and returns its URL.

Key Principles:
- Amounts arrive in whole currency units and are sent to Stripe in cents
- Metadata carries proposal_id so the webhook can mark the proposal accepted
- Any Stripe failure (or a missing key) surfaces as ExternalServiceError; the
  caller keeps the proposal and offers a retry
"""
import stripe
import os
import logging
from typing import Any, Dict

from services.errors import ExternalServiceError
from services.pricing_engine import CheckoutRequest

logger = logging.getLogger(__name__)

# Initialize Stripe (no placeholder default; missing key fails at checkout with clear error)
stripe.api_key = (os.getenv("STRIPE_SECRET_KEY") or os.getenv("STRIPE_API_KEY") or "").strip()

STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:3000")


def to_cents(amount: int) -> int:
    return int(amount) * 100


class StripeService:
    """Stripe checkout operations."""

    def build_session_params(self, request: CheckoutRequest, proposal_id: str, base_url: str) -> Dict[str, Any]:
        base = (base_url or PUBLIC_BASE_URL).strip().rstrip("/")
        if not base.startswith("http://") and not base.startswith("https://"):
            raise ExternalServiceError("stripe", f"Invalid redirect base URL: {base}")

        price_data: Dict[str, Any] = {
            "currency": STRIPE_CURRENCY,
            "unit_amount": to_cents(request.amount),
            "product_data": {"name": request.description},
        }
        if request.is_subscription:
            price_data["recurring"] = {"interval": request.subscription_interval or "month"}

        metadata = {"proposal_id": proposal_id}
        params: Dict[str, Any] = {
            "mode": "subscription" if request.is_subscription else "payment",
            "line_items": [{"price_data": price_data, "quantity": 1}],
            "success_url": f"{base}/proposal/{proposal_id}?success=true",
            "cancel_url": f"{base}/proposal/{proposal_id}?canceled=true",
            "metadata": metadata,
        }
        if request.is_subscription:
            sub_metadata = dict(metadata)
            if request.installment_count:
                sub_metadata["installment_count"] = str(request.installment_count)
            params["subscription_data"] = {"metadata": sub_metadata}
        if request.customer_email:
            params["customer_email"] = request.customer_email
        return params

    async def create_checkout_session(
        self,
        request: CheckoutRequest,
        proposal_id: str,
        base_url: str = PUBLIC_BASE_URL,
    ) -> Dict[str, Any]:
        """Create a Checkout Session for the first charge of a proposal.

        Returns:
            Dict with checkout_url and session_id

        Raises:
            ExternalServiceError: missing API key or any Stripe API failure
        """
        if not (stripe.api_key or "").strip():
            raise ExternalServiceError("stripe", "STRIPE_SECRET_KEY or STRIPE_API_KEY is not set")

        params = self.build_session_params(request, proposal_id, base_url)
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout error for proposal {proposal_id}: {e}")
            raise ExternalServiceError("stripe", f"Failed to create checkout session: {e}")

        logger.info(f"Checkout session created for proposal {proposal_id}: {session.id}")
        return {"checkout_url": session.url, "session_id": session.id}


stripe_service = StripeService()
