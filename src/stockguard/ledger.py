"""
Stock ledger operations.

Every mutation is a single UPDATE statement whose WHERE clause carries the
precondition, so the check and the write happen atomically in the database:

    UPDATE product SET stock = stock - q WHERE id = ? AND stock >= q

Two concurrent reservations for the last unit therefore end with exactly
one matched row; there is no read-then-write window to lose. Nothing here
takes an application-level lock.

All public operations return a `StockResult`. Validation and business
failures come back as `Failure`; database errors propagate to the caller.
"""
from __future__ import annotations

import logging
import uuid
from functools import wraps
from typing import Any, Iterable

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import (
    InvalidQuantity,
    InvalidRequest,
    ProductNotFound,
    StockGuardError,
    StockUnavailable,
)
from .models import Product
from .results import Failure, StockResult, Success

logger = logging.getLogger(__name__)

PROJECTION = ("id", "name", "stock", "price", "discount")


def _as_result(fn):
    @wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> StockResult:
        try:
            return fn(*args, **kwargs)
        except StockGuardError as exc:
            logger.info("%s rejected: %s (%s)", fn.__name__, exc.code, exc)
            return Failure(exc)

    return wrapper


def coerce_id(value: Any) -> uuid.UUID | None:
    """Return ``value`` as a product UUID, or None if it cannot be one."""
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def validate_quantity(value: Any) -> int:
    # bool is an int subclass; `true` in a JSON body is not a quantity.
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidQuantity("Invalid quantity")
    return value


def _current_stock(pk: uuid.UUID) -> int:
    return Product.objects.filter(pk=pk).values_list("stock", flat=True).get()


def take_stock(product_id: Any, quantity: int) -> int | None:
    """
    Decrement stock by ``quantity`` if at least that much is on hand.

    Returns the new stock level, or None when the product is missing or
    short. Must run inside a transaction so the read-back sees this row as
    written by the UPDATE.
    """
    pk = coerce_id(product_id)
    if pk is None:
        return None

    matched = Product.objects.filter(pk=pk, stock__gte=quantity).update(
        stock=F("stock") - quantity, updated_at=timezone.now()
    )
    if not matched:
        return None
    return _current_stock(pk)


def put_back_stock(product_id: Any, quantity: int) -> int | None:
    """
    Increment stock by ``quantity`` with no upper bound.

    Returns the new stock level, or None when the product does not exist.
    """
    pk = coerce_id(product_id)
    if pk is None:
        return None

    matched = Product.objects.filter(pk=pk).update(
        stock=F("stock") + quantity, updated_at=timezone.now()
    )
    if not matched:
        return None
    return _current_stock(pk)


def _record(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "_id": str(row["id"]),
        "name": row["name"],
        "stock": row["stock"],
        "price": row["price"],
        "discount": row["discount"],
        "available": row["stock"] > 0,
    }


@_as_result
def reserve_stock(product_id: Any, quantity: Any) -> StockResult:
    """
    Atomically take ``quantity`` units of a product.

    A missing product and insufficient stock are reported identically, as
    `StockUnavailable`. Either the full quantity is reserved or nothing is.
    """
    qty = validate_quantity(quantity)

    with transaction.atomic():
        new_stock = take_stock(product_id, qty)

    if new_stock is None:
        raise StockUnavailable()

    logger.info("reserved %d of %s, %d left", qty, product_id, new_stock)
    return Success("Stock reserved successfully", {"newStock": new_stock})


@_as_result
def release_stock(product_id: Any, quantity: Any) -> StockResult:
    """
    Atomically give ``quantity`` units back to a product.

    There is no cross-check against what was reserved: callers that need
    exact inverses should go through `stockguard.holds` instead.
    """
    qty = validate_quantity(quantity)

    with transaction.atomic():
        new_stock = put_back_stock(product_id, qty)

    if new_stock is None:
        raise ProductNotFound()

    logger.info("released %d of %s, now %d", qty, product_id, new_stock)
    return Success("Stock released successfully", {"newStock": new_stock})


@_as_result
def set_stock(product_id: Any, stock: Any) -> StockResult:
    """Overwrite the stock level of a product (admin correction)."""
    if isinstance(stock, bool) or not isinstance(stock, int):
        raise InvalidQuantity("Invalid stock value")
    if stock < 0:
        raise InvalidQuantity("Stock cannot be negative")

    pk = coerce_id(product_id)
    if pk is None:
        raise ProductNotFound()

    with transaction.atomic():
        matched = Product.objects.filter(pk=pk).update(stock=stock, updated_at=timezone.now())
        if not matched:
            raise ProductNotFound()
        row = Product.objects.filter(pk=pk).values("id", "name", "stock").get()

    logger.info("stock of %s set to %d", product_id, stock)
    return Success(
        "Stock updated successfully",
        {"product": {"_id": str(row["id"]), "name": row["name"], "stock": row["stock"]}},
    )


@_as_result
def check_stock(product_id: Any) -> StockResult:
    pk = coerce_id(product_id)
    row = None
    if pk is not None:
        row = Product.objects.filter(pk=pk).values(*PROJECTION).first()
    if row is None:
        raise ProductNotFound()

    return Success("Stock checked", {"product": _record(row)})


@_as_result
def sync_stock(product_ids: Iterable[Any]) -> StockResult:
    """
    Read the stock of many products at once.

    Identifiers that do not match a product (or are not valid identifiers
    at all) are left out of the result rather than reported as errors.
    """
    if not isinstance(product_ids, list) or not product_ids:
        raise InvalidRequest("Invalid product IDs")
    if not all(isinstance(value, str) for value in product_ids):
        raise InvalidRequest("Invalid product IDs")

    pks = {pk for pk in map(coerce_id, product_ids) if pk is not None}
    rows = Product.objects.filter(pk__in=pks).values(*PROJECTION) if pks else []

    products = [_record(row) for row in rows]
    logger.debug("synced %d of %d requested products", len(products), len(product_ids))
    return Success("Stock synced", {"products": products})
