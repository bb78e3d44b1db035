from .api import lock
from .decorators import exclusive, throttle
from .exceptions import (
    InvalidQuantity,
    InvalidRequest,
    LockAcquireTimeout,
    ProductNotFound,
    StockGuardError,
    StockUnavailable,
)
from .results import Failure, StockResult, Success

__all__ = [
    "lock",
    "exclusive",
    "throttle",
    "StockGuardError",
    "InvalidQuantity",
    "InvalidRequest",
    "ProductNotFound",
    "StockUnavailable",
    "LockAcquireTimeout",
    "Success",
    "Failure",
    "StockResult",
]
