"""
Checkout orchestration.

Starting a checkout snapshots the cart into a pending order, holds the
stock for it and only then asks the payment provider for a hosted payment
page, which expires together with the holds. Webhook events later commit
the holds (paid) or release them (session expired, delayed payment
failed). A declined card only marks the order: the session stays open and
the shopper may retry. Holds that never hear back are reaped once they
expire, and a payment that still arrives after that takes the stock again
or flags the order as short.

There is no transaction spanning the database and the payment provider:
the hold/order transaction commits first, and a provider failure is undone
by releasing the holds and cancelling the order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from django.db import transaction
from django.utils import timezone

from . import conf, payments
from .exceptions import InvalidRequest, PaymentGatewayError, StockUnavailable
from .holds import commit_holds, place_holds, recommit_holds, release_holds
from .ledger import coerce_id, validate_quantity
from .models import Order, OrderItem, OrderStatus, PaymentStatus, Product

logger = logging.getLogger(__name__)

PAID_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
# The session is closed: nothing more can be paid on it.
CLOSED_EVENTS = {"checkout.session.expired", "checkout.session.async_payment_failed"}
# One attempt failed; the session stays open for another.
DECLINED_EVENTS = {"payment_intent.payment_failed"}


@dataclass(frozen=True)
class CheckoutLine:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    url: str


def parse_lines(items: Any) -> list[CheckoutLine]:
    """
    Validate the ``items`` of a checkout request body.

    Repeated products are merged into one line.
    """
    if not isinstance(items, list) or not items:
        raise InvalidRequest("Cart is empty")

    quantities: dict[str, int] = {}
    for entry in items:
        if not isinstance(entry, dict) or not isinstance(entry.get("productId"), str):
            raise InvalidRequest("Invalid cart item")
        qty = validate_quantity(entry.get("quantity"))
        quantities[entry["productId"]] = quantities.get(entry["productId"], 0) + qty

    return [CheckoutLine(product_id=pid, quantity=qty) for pid, qty in quantities.items()]


def unit_amount(product: Product) -> int:
    """Discounted unit price in minor currency units."""
    price = product.price * (Decimal(100) - product.discount) / Decimal(100)
    return int((price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def start_checkout(lines: list[CheckoutLine], email: str = "") -> CheckoutResult:
    gateway = payments.get_gateway()

    with transaction.atomic():
        pks = [coerce_id(line.product_id) for line in lines]
        products = Product.objects.in_bulk([pk for pk in pks if pk is not None])

        order = Order.objects.create(email=email, currency=conf.get("CURRENCY"))
        items = []
        for line, pk in zip(lines, pks):
            product = products.get(pk)
            if product is None:
                raise StockUnavailable(f"Not enough stock available for product {line.product_id}")
            items.append(
                OrderItem(
                    order=order,
                    product=product,
                    name=product.name,
                    unit_amount=unit_amount(product),
                    quantity=line.quantity,
                )
            )
        OrderItem.objects.bulk_create(items)

        total = sum(item.unit_amount * item.quantity for item in items)
        order.total_amount = Decimal(total) / 100
        order.save(update_fields=["total_amount", "updated_at"])

        holds = place_holds(
            [(line.product_id, line.quantity) for line in lines], reference=str(order.pk)
        )

    try:
        session = gateway.create_session(order, items, expires_at=holds[0].expires_at)
    except PaymentGatewayError:
        release_holds(str(order.pk))
        Order.objects.filter(pk=order.pk).update(
            status=OrderStatus.CANCELLED,
            payment_status=PaymentStatus.CANCELED,
            updated_at=timezone.now(),
        )
        raise

    order.payment_session_id = session.id
    order.save(update_fields=["payment_session_id", "updated_at"])
    logger.info("checkout started for order %s (%d lines)", order.pk, len(items))
    return CheckoutResult(order=order, url=session.url)


def _transition(order: Order, from_statuses: list[str], **fields: Any) -> bool:
    return bool(
        Order.objects.filter(pk=order.pk, status__in=from_statuses).update(
            updated_at=timezone.now(), **fields
        )
    )


def _settle_paid(order: Order) -> None:
    reference = str(order.pk)
    if commit_holds(reference):
        return

    # The holds went back to stock before the payment landed.
    lines = order.items.values_list("product_id", "quantity")
    if not recommit_holds(reference, lines):
        Order.objects.filter(pk=order.pk).update(stock_shortfall=True, updated_at=timezone.now())
        logger.error("order %s was paid but its stock is gone", order.pk)


def handle_payment_event(event: payments.PaymentEvent) -> Order | None:
    """
    Apply a verified payment event to its order.

    Returns the updated order, or None when the event is not one we act on
    or names no known order. Neither case is an error: the provider must
    still get a 2xx so it stops redelivering.
    """
    if event.type not in PAID_EVENTS | CLOSED_EVENTS | DECLINED_EVENTS:
        logger.debug("ignoring payment event %s", event.type)
        return None

    pk = coerce_id(event.order_id)
    order = Order.objects.filter(pk=pk).first() if pk is not None else None
    if order is None:
        logger.warning("order not found for payment event %s: %s", event.type, event.order_id)
        return None

    with transaction.atomic():
        if event.type in PAID_EVENTS:
            if _transition(
                order,
                [OrderStatus.PENDING, OrderStatus.CANCELLED],
                status=OrderStatus.CONFIRMED,
                payment_status=PaymentStatus.SUCCEEDED,
            ):
                _settle_paid(order)
        elif event.type in DECLINED_EVENTS:
            _transition(
                order,
                [OrderStatus.PENDING],
                payment_status=PaymentStatus.REQUIRES_PAYMENT_METHOD,
            )
        else:
            payment_status = (
                PaymentStatus.CANCELED if event.type == "checkout.session.expired"
                else PaymentStatus.REQUIRES_PAYMENT_METHOD
            )
            if _transition(
                order,
                [OrderStatus.PENDING],
                status=OrderStatus.CANCELLED,
                payment_status=payment_status,
            ):
                release_holds(str(order.pk))

    order.refresh_from_db()
    logger.info("order %s is now %s/%s after %s", order.pk, order.status, order.payment_status, event.type)
    return order
