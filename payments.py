"""
Payments

Thin wrapper around Stripe Checkout: builds line items from cart lines,
creates hosted checkout sessions and parses webhook deliveries.
"""

import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

import stripe

logger = logging.getLogger(__name__)

CURRENCY = "usd"
CHECKOUT_COMPLETED = "checkout.session.completed"


class WebhookError(Exception):
    """A webhook body could not be parsed or its signature did not verify."""


def to_minor_units(price: Any) -> int:
    """Price in dollars to whole cents."""
    cents = (Decimal(str(price)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def build_line_items(lines: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "price_data": {
                "currency": CURRENCY,
                "product_data": {
                    "name": line["title"],
                    "images": [line["cart_image"]],
                },
                "unit_amount": to_minor_units(line["price"]),
            },
            "quantity": line["cart_quantity"],
        }
        for line in lines
    ]


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: Optional[str] = None):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def create_checkout_session(self, *, customer_email: str, line_items: List[Dict[str, Any]],
                                user_id: int, success_url: str, cancel_url: str) -> str:
        session = stripe.checkout.Session.create(
            api_key=self.secret_key,
            customer_email=customer_email,
            submit_type="pay",
            billing_address_collection="auto",
            payment_method_types=["card"],
            line_items=line_items,
            metadata={"user_id": str(user_id)},
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
        )
        return session.id

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookError(f"Invalid payload: {e}")
        if self.webhook_secret:
            try:
                stripe.WebhookSignature.verify_header(body, signature or "", self.webhook_secret)
            except stripe.SignatureVerificationError as e:
                raise WebhookError(f"Invalid signature: {e}")
        else:
            logger.warning("STRIPE_WEBHOOK_SECRET not set, accepting unverified webhook")
        try:
            event = json.loads(body)
        except ValueError as e:
            raise WebhookError(f"Invalid payload: {e}")
        if not isinstance(event, dict) or "type" not in event:
            raise WebhookError("Invalid payload: missing event type")
        return event
