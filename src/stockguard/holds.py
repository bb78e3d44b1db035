"""
Time-boxed stock holds.

A hold records exactly what a checkout took out of stock, so giving it back
restores that quantity and nothing else. Holds that are neither committed
nor released before ``expires_at`` are returned to stock by
`reap_expired_holds`, run periodically by the ``reap_stock_holds``
management command.

State changes are conditional UPDATEs on ``state = 'held'``: a hold is
committed or released at most once, whichever caller gets there first.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from django.db import transaction
from django.utils import timezone

from . import conf
from .decorators import exclusive
from .exceptions import StockUnavailable
from .ledger import coerce_id, put_back_stock, take_stock, validate_quantity
from .models import HoldState, StockHold

logger = logging.getLogger(__name__)


def place_holds(
    lines: Iterable[tuple[Any, Any]],
    reference: str,
    ttl: int | None = None,
) -> list[StockHold]:
    """
    Reserve every ``(product_id, quantity)`` line under one reference.

    All lines are reserved in a single transaction: if one product is short,
    nothing is reserved and StockUnavailable is raised.
    """
    ttl = conf.get("HOLD_TTL_SECONDS") if ttl is None else ttl
    expires_at = timezone.now() + timedelta(seconds=ttl)
    holds: list[StockHold] = []

    with transaction.atomic():
        for product_id, quantity in lines:
            qty = validate_quantity(quantity)
            if take_stock(product_id, qty) is None:
                raise StockUnavailable(f"Not enough stock available for product {product_id}")
            holds.append(
                StockHold(
                    product_id=coerce_id(product_id),
                    quantity=qty,
                    reference=reference,
                    expires_at=expires_at,
                )
            )
        StockHold.objects.bulk_create(holds)

    logger.info("placed %d holds for %s until %s", len(holds), reference, expires_at.isoformat())
    return holds


def commit_holds(reference: str) -> int:
    """Mark the held stock of ``reference`` as sold. Returns the number of holds."""
    committed = StockHold.objects.filter(reference=reference, state=HoldState.HELD).update(
        state=HoldState.COMMITTED, settled_at=timezone.now()
    )
    if not committed:
        logger.warning("no live holds to commit for %s", reference)
    else:
        logger.info("committed %d holds for %s", committed, reference)
    return committed


def recommit_holds(reference: str, lines: Iterable[tuple[Any, Any]]) -> bool:
    """
    Take the stock of ``reference`` again after its holds were released, and
    record it as committed.

    Used when a payment arrives for an order whose holds already went back
    to stock. All or nothing: returns False, taking nothing, if any product
    is now short.
    """
    now = timezone.now()
    holds: list[StockHold] = []

    try:
        with transaction.atomic():
            for product_id, quantity in lines:
                if take_stock(product_id, quantity) is None:
                    raise StockUnavailable(f"Not enough stock available for product {product_id}")
                holds.append(
                    StockHold(
                        product_id=coerce_id(product_id),
                        quantity=quantity,
                        reference=reference,
                        state=HoldState.COMMITTED,
                        expires_at=now,
                        settled_at=now,
                    )
                )
            StockHold.objects.bulk_create(holds)
    except StockUnavailable as exc:
        logger.error("cannot take stock again for %s: %s", reference, exc)
        return False

    logger.warning("took stock again for %s after its holds were released", reference)
    return True


def _release_one(hold_id: int, product_id: Any, quantity: int, now: datetime) -> bool:
    with transaction.atomic():
        matched = StockHold.objects.filter(pk=hold_id, state=HoldState.HELD).update(
            state=HoldState.RELEASED, settled_at=now
        )
        if not matched:
            return False
        put_back_stock(product_id, quantity)
    return True


def _release(queryset, now: datetime) -> int:
    released = 0
    for hold_id, product_id, quantity in queryset.values_list("pk", "product_id", "quantity"):
        if _release_one(hold_id, product_id, quantity, now):
            released += 1
    return released


def release_holds(reference: str) -> int:
    """
    Return the held stock of ``reference`` to the products.

    Returns the number of holds released by this call; holds already
    committed or released are left alone.
    """
    released = _release(
        StockHold.objects.filter(reference=reference, state=HoldState.HELD),
        timezone.now(),
    )
    logger.info("released %d holds for %s", released, reference)
    return released


@exclusive(
    key="stock-holds:reap",
    timeout=lambda: conf.get("REAP_LOCK_TIMEOUT"),
    on_conflict="return_none",
)
def reap_expired_holds(now: datetime | None = None) -> int | None:
    """
    Release every hold whose ``expires_at`` has passed.

    Returns the number of holds released, or None if another worker is
    already sweeping.
    """
    now = now or timezone.now()
    released = _release(
        StockHold.objects.filter(state=HoldState.HELD, expires_at__lte=now).order_by("expires_at"),
        now,
    )
    if released:
        logger.info("reaped %d expired holds", released)
    return released
