from .cart import Cart, CartLine, CartUpdate
from .monitor import (
    CartStockMonitor,
    IssueKind,
    Resolution,
    ResolutionAction,
    StockIssue,
    detect_stock_issues,
)
from .records import StockRecord
from .sync import HttpStockFetcher, StockSyncService, SyncReport, Trigger

__all__ = [
    "Cart",
    "CartLine",
    "CartUpdate",
    "CartStockMonitor",
    "IssueKind",
    "Resolution",
    "ResolutionAction",
    "StockIssue",
    "detect_stock_issues",
    "StockRecord",
    "HttpStockFetcher",
    "StockSyncService",
    "SyncReport",
    "Trigger",
]
