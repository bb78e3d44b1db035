from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

LOW_STOCK_THRESHOLD = 5


@dataclass(frozen=True)
class StockRecord:
    """Authoritative stock of one product, as returned by the stock endpoints."""

    product_id: str
    name: str
    stock: int
    price: Decimal | None = None
    discount: int = 0

    @property
    def available(self) -> bool:
        return self.stock > 0

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock == 0

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.stock <= LOW_STOCK_THRESHOLD

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "StockRecord":
        """
        Build a record from a ``{"_id", "name", "stock", ...}`` mapping.

        Raises ValueError if the mapping is not a stock record.
        """
        try:
            stock = data["stock"]
            product_id = data["_id"]
        except (KeyError, TypeError) as exc:
            raise ValueError(f"not a stock record: {data!r}") from exc
        if isinstance(stock, bool) or not isinstance(stock, int):
            raise ValueError(f"invalid stock value: {stock!r}")

        price = data.get("price")
        try:
            price = None if price is None else Decimal(str(price))
        except InvalidOperation as exc:
            raise ValueError(f"invalid price: {price!r}") from exc

        return cls(
            product_id=str(product_id),
            name=data.get("name") or "",
            stock=stock,
            price=price,
            discount=data.get("discount") or 0,
        )
