"""
Client-held shopping cart.

``max_stock`` on each line is the last stock figure the client saw. It keeps
the UI from offering quantities that are obviously unavailable, but it is
advisory only: the server enforces stock when the reservation happens.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Iterator

from .records import StockRecord


@dataclass
class CartLine:
    product_id: str
    name: str
    price: Decimal
    quantity: int
    max_stock: int
    discount: int = 0
    image: str = ""

    @property
    def unit_price(self) -> Decimal:
        if self.discount > 0:
            return self.price * (100 - self.discount) / 100
        return self.price

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartUpdate:
    ok: bool
    message: str = ""


class Cart:
    def __init__(self, lines: Iterable[CartLine] = ()) -> None:
        self._lines: dict[str, CartLine] = {line.product_id: line for line in lines}

    def __iter__(self) -> Iterator[CartLine]:
        return iter(list(self._lines.values()))

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._lines

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    @property
    def product_ids(self) -> list[str]:
        return list(self._lines)

    def get(self, product_id: str) -> CartLine | None:
        return self._lines.get(product_id)

    def add_item(
        self,
        product_id: str,
        name: str,
        price: Decimal,
        stock: int,
        discount: int = 0,
        image: str = "",
    ) -> CartUpdate:
        """Add one unit of a product, refusing to go past its known stock."""
        line = self._lines.get(product_id)
        if line is not None:
            line.max_stock = stock
            if line.quantity + 1 > stock:
                return CartUpdate(False, "Not enough stock available!")
            line.quantity += 1
            return CartUpdate(True, "Product quantity updated!")

        if stock <= 0:
            return CartUpdate(False, "Product out of stock!")

        self._lines[product_id] = CartLine(
            product_id=product_id,
            name=name,
            price=price,
            quantity=1,
            max_stock=stock,
            discount=discount,
            image=image,
        )
        return CartUpdate(True, "Product added to cart!")

    def update_quantity(self, product_id: str, quantity: int) -> CartUpdate:
        """Set a line's quantity; zero or less removes the line."""
        if quantity <= 0:
            self.remove_item(product_id)
            return CartUpdate(True, "Product removed from cart")

        line = self._lines.get(product_id)
        if line is None:
            return CartUpdate(False, "Product not in cart")
        if quantity > line.max_stock:
            return CartUpdate(False, "Not enough stock available!")

        line.quantity = quantity
        return CartUpdate(True)

    def remove_item(self, product_id: str) -> bool:
        return self._lines.pop(product_id, None) is not None

    def clear(self) -> None:
        self._lines.clear()

    def apply_stock(self, records: Iterable[StockRecord]) -> None:
        """Refresh each line's stock ceiling from synced records."""
        for record in records:
            line = self._lines.get(record.product_id)
            if line is not None:
                line.max_stock = record.stock

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    @property
    def total_price(self) -> Decimal:
        return sum((line.total for line in self._lines.values()), Decimal(0))

    @property
    def total_discount(self) -> Decimal:
        return sum(
            ((line.price - line.unit_price) * line.quantity for line in self._lines.values()),
            Decimal(0),
        )
