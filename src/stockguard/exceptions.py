"""
Exception hierarchy for stockguard.

Every error carries a machine-readable ``code`` and the HTTP ``status`` the
views answer with. Expected business failures (bad quantity, unknown
product, not enough stock) are wrapped into ``Failure`` results by the
ledger; infrastructure errors are never converted and propagate as-is.

Catch `StockGuardError` to handle any failure raised by the library.

Example
-------
>>> try:
...     with lock("stock-holds:reap"):
...         ...
... except StockGuardError as exc:
...     log(exc.code)
"""


class StockGuardError(Exception):
    """
    Base exception for all stockguard errors.
    """

    code: str = "stockguard_error"
    status: int = 500
    default_message: str = "An unspecified stockguard error occurred."

    def __init__(self, message: str | None = None) -> None:
        if message is None:
            message = self.default_message
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidQuantity(StockGuardError):
    """
    Raised when a quantity or stock value is not a valid integer for the
    operation (zero or negative reservation, negative stock level, ...).

    Checked before any storage access, so nothing has been mutated.
    """

    code = "invalid_quantity"
    status = 400
    default_message = "Invalid quantity"


class InvalidRequest(StockGuardError):
    """
    Raised for malformed request bodies: broken JSON, missing or
    wrongly-typed identifier lists, empty checkout carts.
    """

    code = "invalid_request"
    status = 400
    default_message = "Invalid request"


class ProductNotFound(StockGuardError):
    code = "product_not_found"
    status = 404
    default_message = "Product not found"


class StockUnavailable(StockGuardError):
    """
    Raised when a reservation cannot be satisfied.

    The reservation path deliberately folds "product does not exist" and
    "not enough stock" into this single outcome. Callers should treat it as
    an expected branch (show "out of stock"), not as a crash.
    """

    code = "stock_unavailable"
    status = 400
    default_message = "Not enough stock available or product not found"


class OrderNotFound(StockGuardError):
    code = "order_not_found"
    status = 404
    default_message = "Order not found"


class PaymentGatewayError(StockGuardError):
    """
    Raised when the payment provider rejects or fails to create a session,
    or when a webhook payload cannot be verified.
    """

    code = "payment_gateway_error"
    status = 502
    default_message = "Payment session creation failed"


class InvalidSignature(PaymentGatewayError):
    code = "invalid_signature"
    status = 400
    default_message = "Invalid signature"


class RateLimited(StockGuardError):
    code = "rate_limited"
    status = 429
    default_message = "Too many requests, try again later"


class LockAcquireTimeout(StockGuardError):
    """
    Raised when a named lock cannot be acquired within the given timeout.

    This typically means another worker is running the same protected
    operation (e.g. a concurrent expired-hold sweep).

    Example
    -------
    >>> try:
    ...     with lock("stock-holds:reap", timeout=0.5):
    ...         sweep()
    ... except LockAcquireTimeout:
    ...     retry_later()
    """

    code = "lock_acquire_timeout"
    status = 409
    default_message = "Failed to acquire lock"


class SyncFailed(StockGuardError):
    """
    Raised by stock fetchers when the authoritative stock could not be read
    (network error, non-2xx response, ``success: false`` body).

    The sync service catches it and leaves its previous state untouched.
    """

    code = "sync_failed"
    status = 503
    default_message = "Stock sync failed"
