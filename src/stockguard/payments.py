from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence

import stripe
from django.utils.module_loading import import_string

from . import conf
from .exceptions import InvalidSignature, PaymentGatewayError
from .models import Order, OrderItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSession:
    id: str
    url: str


@dataclass(frozen=True)
class PaymentEvent:
    type: str
    order_id: str | None
    session_id: str | None = None


class PaymentGateway(Protocol):
    """
    What checkout needs from a payment provider: a hosted payment page for
    an order, and verified webhook events about it.
    """
    def create_session(
        self, order: Order, items: Sequence[OrderItem], expires_at: datetime | None = None
    ) -> PaymentSession: ...
    def parse_event(self, payload: bytes, signature: str | None) -> PaymentEvent: ...


class StripeCheckoutGateway:
    """
    Stripe Checkout in ``payment`` mode.

    The order id travels in the session metadata and in the payment intent
    metadata, so both ``checkout.session.*`` and ``payment_intent.*`` events
    can be matched back to the order. ``expires_at`` closes the session when
    the stock holds run out; Stripe accepts 30 minutes to 24 hours ahead.
    """

    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None) -> None:
        self.api_key = api_key or conf.get("STRIPE_SECRET_KEY")
        self.webhook_secret = webhook_secret or conf.get("STRIPE_WEBHOOK_SECRET")

    def create_session(
        self, order: Order, items: Sequence[OrderItem], expires_at: datetime | None = None
    ) -> PaymentSession:
        order_id = str(order.pk)
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": order.currency,
                        "product_data": {"name": item.name},
                        "unit_amount": item.unit_amount,
                    },
                    "quantity": item.quantity,
                }
                for item in items
            ],
            "success_url": conf.get("SUCCESS_URL").replace("{order_id}", order_id),
            "cancel_url": conf.get("CANCEL_URL"),
            "metadata": {"orderId": order_id},
            "payment_intent_data": {"metadata": {"orderId": order_id}},
        }
        if order.email:
            params["customer_email"] = order.email
        if expires_at is not None:
            params["expires_at"] = int(expires_at.timestamp())

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            logger.error("stripe session creation failed for order %s: %s", order_id, exc)
            raise PaymentGatewayError() from exc

        return PaymentSession(id=session.id, url=session.url)

    def parse_event(self, payload: bytes, signature: str | None) -> PaymentEvent:
        if not signature:
            raise InvalidSignature("Missing Stripe signature")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
            event = json.loads(body)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("webhook signature verification failed: %s", exc)
            raise InvalidSignature() from exc

        obj = (event.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}
        return PaymentEvent(
            type=event.get("type", ""),
            order_id=metadata.get("orderId"),
            session_id=obj.get("id"),
        )


def get_gateway() -> PaymentGateway:
    return import_string(conf.get("PAYMENT_GATEWAY"))()
