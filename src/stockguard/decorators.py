from __future__ import annotations

import logging
from functools import wraps
from inspect import signature
from typing import Any, Callable, Literal, Optional, Union

from . import conf
from .api import lock
from .backends.cache import CacheRateCounter
from .exceptions import LockAcquireTimeout, RateLimited

logger = logging.getLogger(__name__)

OnConflict = Literal["raise", "return_none"]
Timeout = Union[float, None, Callable[[], Optional[float]]]


def lock_key(template: str | Callable[..., str], fn: Callable[..., Any], args, kwargs) -> str:
    """
    Render the lock key for one call of ``fn``.

    ``template`` is either a callable taking the same arguments as ``fn`` or
    a format string such as ``"holds:{reference}"``, whose fields are looked
    up by parameter name (defaults included).
    """
    if callable(template):
        return template(*args, **kwargs)

    call = signature(fn).bind_partial(*args, **kwargs)
    call.apply_defaults()
    try:
        return template.format_map(call.arguments)
    except KeyError as exc:
        raise KeyError(
            f"exclusive: {template!r} needs {exc.args[0]!r}; "
            f"{fn.__qualname__} takes {list(call.arguments)}"
        ) from exc


def exclusive(
    *,
    key: str | Callable[..., str],
    timeout: Timeout = 3.0,
    on_conflict: OnConflict | Callable[..., Any] = "raise",
):
    """
    Run the decorated function under a named lock, one caller per key.

    When the lock stays busy past ``timeout``:

    - ``"raise"`` lets `LockAcquireTimeout` through (default);
    - ``"return_none"`` returns None, for best-effort jobs such as sweeps;
    - a callable is called with the original arguments and its result is
      returned instead.

    ``timeout`` may be a zero-argument callable, read on every call so it
    can come from the settings.

        @exclusive(key="stock-holds:reap", on_conflict="return_none")
        def reap_expired_holds(now=None):
            ...
    """
    if isinstance(on_conflict, str) and on_conflict not in ("raise", "return_none"):
        raise ValueError(f"exclusive: unknown on_conflict {on_conflict!r}")

    def decorator(fn: Callable[..., Any]):
        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any):
            name = lock_key(key, fn, args, kwargs)
            wait = timeout() if callable(timeout) else timeout

            try:
                with lock(name, timeout=wait):
                    return fn(*args, **kwargs)
            except LockAcquireTimeout:
                logger.info("%s: lock %r still busy after %ss", fn.__qualname__, name, wait)
                if on_conflict == "raise":
                    raise
                if on_conflict == "return_none":
                    return None
                return on_conflict(*args, **kwargs)

        return wrapper

    return decorator


def client_address(request) -> str:
    return request.META.get("REMOTE_ADDR") or "unknown"


def throttle(
    scope: str,
    *,
    rate: tuple[int, int] | None = None,
    key: Callable[[Any], str] = client_address,
):
    """
    Rate-limit a Django view per client.

    ``rate`` is ``(max_requests, window_seconds)``; it defaults to
    ``STOCKGUARD["THROTTLE_RATE"]`` read on every request, and a configured
    value of None turns throttling off. Counters live in the Django cache,
    so all workers sharing the cache share the limit.

    Raises RateLimited once the client exceeds the limit for the window.
    """
    def decorator(view: Callable[..., Any]):
        @wraps(view)
        def wrapper(request, *args: Any, **kwargs: Any):
            limit_window = rate or conf.get("THROTTLE_RATE")
            if limit_window is None:
                return view(request, *args, **kwargs)

            limit, window = limit_window
            client = key(request)
            counter = CacheRateCounter(alias=conf.get("THROTTLE_CACHE_ALIAS"))
            decision = counter.hit(f"{scope}:{client}", limit, window)

            if not decision.allowed:
                logger.warning(
                    "throttled %s for %s (%d requests in window)",
                    scope, client, decision.count,
                )
                raise RateLimited()

            return view(request, *args, **kwargs)

        return wrapper

    return decorator
