"""
Cart consistency monitor.

Compares the quantities held in a `Cart` with freshly synced stock and
offers ways to settle the differences. Everything here works on the
client-side cart only; the real stock is touched solely by reservations at
checkout time.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from .cart import Cart
from .records import StockRecord

logger = logging.getLogger(__name__)

Notice = Callable[[str, str], None]


class IssueKind(str, enum.Enum):
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT_STOCK = "insufficient_stock"


class Resolution(str, enum.Enum):
    UPDATE = "update"
    REMOVE = "remove"
    KEEP = "keep"


@dataclass(frozen=True)
class StockIssue:
    product_id: str
    product_name: str
    issue: IssueKind
    available_stock: int
    requested_quantity: int


@dataclass(frozen=True)
class ResolutionAction:
    product_id: str
    action: Resolution
    quantity: int | None = None


def detect_stock_issues(cart: Cart, records: Iterable[StockRecord]) -> list[StockIssue]:
    """
    List the cart lines the synced stock cannot satisfy.

    Products missing from ``records`` produce no issue: the sync could not
    see them, which is not evidence they are gone.
    """
    by_id = {record.product_id: record for record in records}
    issues = []

    for line in cart:
        record = by_id.get(line.product_id)
        if record is None:
            continue
        if record.stock == 0:
            kind = IssueKind.OUT_OF_STOCK
        elif record.stock < line.quantity:
            kind = IssueKind.INSUFFICIENT_STOCK
        else:
            continue
        issues.append(
            StockIssue(
                product_id=line.product_id,
                product_name=line.name,
                issue=kind,
                available_stock=record.stock,
                requested_quantity=line.quantity,
            )
        )

    return issues


def _log_notice(message: str, level: str) -> None:
    logger.log(logging.WARNING if level == "warning" else logging.INFO, message)


class CartStockMonitor:
    """
    Holds the outstanding stock issues of a cart.

    ``on_notice(message, level)`` is called for every automatic change so
    the UI can tell the shopper; level is "info" or "warning". Without a
    callback the notices are logged.
    """

    def __init__(self, cart: Cart, on_notice: Notice | None = None) -> None:
        self.cart = cart
        self.on_notice = on_notice or _log_notice
        self._issues: list[StockIssue] = []

    @property
    def issues(self) -> list[StockIssue]:
        return list(self._issues)

    @property
    def has_issues(self) -> bool:
        return bool(self._issues)

    def refresh(self, records: Iterable[StockRecord]) -> list[StockIssue]:
        self._issues = detect_stock_issues(self.cart, records)
        return self.issues

    def clear(self) -> None:
        self._issues = []

    def _apply(self, issue: StockIssue, action: Resolution) -> ResolutionAction:
        if action is Resolution.REMOVE:
            self.cart.remove_item(issue.product_id)
            return ResolutionAction(issue.product_id, action)

        if action is Resolution.UPDATE:
            line = self.cart.get(issue.product_id)
            if line is not None:
                line.max_stock = issue.available_stock
            self.cart.update_quantity(issue.product_id, issue.available_stock)
            return ResolutionAction(issue.product_id, action, issue.available_stock)

        return ResolutionAction(issue.product_id, Resolution.KEEP)

    def resolve(self, product_id: str, action: Resolution | str) -> ResolutionAction | None:
        """
        Settle one issue as the shopper chose.

        ``keep`` leaves the cart as it is; the excess will be refused when
        the checkout reserves stock. Returns None if there is no issue for
        ``product_id``.
        """
        action = Resolution(action)
        issue = next((i for i in self._issues if i.product_id == product_id), None)
        if issue is None:
            return None

        result = self._apply(issue, action)
        self._issues = [i for i in self._issues if i.product_id != product_id]
        return result

    def auto_resolve(self) -> list[ResolutionAction]:
        """
        Remove out-of-stock lines and clamp short lines to what is available.

        Calling it again with no outstanding issues changes nothing.
        """
        actions = []
        for issue in self._issues:
            if issue.issue is IssueKind.OUT_OF_STOCK:
                actions.append(self._apply(issue, Resolution.REMOVE))
                self.on_notice(
                    f"{issue.product_name} was removed from your cart (out of stock)", "warning"
                )
            else:
                actions.append(self._apply(issue, Resolution.UPDATE))
                self.on_notice(
                    f"{issue.product_name} quantity updated to {issue.available_stock} (limited stock)",
                    "info",
                )

        self._issues = []
        return actions
