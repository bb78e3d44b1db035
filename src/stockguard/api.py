from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Protocol

from django.db import connection
from django.utils.module_loading import import_string

from . import conf
from .backends.cache import CacheLockBackend
from .backends.postgres import PostgresAdvisoryLockBackend
from .exceptions import LockAcquireTimeout


class LockBackend(Protocol):
    """
    Minimal interface a lock backend has to provide.
    """
    def acquire(self, key: str, timeout: float | None) -> bool: ...
    def release(self, key: str) -> None: ...


def get_backend() -> LockBackend:
    """
    Return the lock backend configured by ``STOCKGUARD["LOCK_BACKEND"]``.

    Without an explicit setting, PostgreSQL connections get advisory locks
    and every other database falls back to the cache backend.
    """
    path = conf.get("LOCK_BACKEND")
    if path:
        return import_string(path)()

    if connection.vendor == "postgresql":
        return PostgresAdvisoryLockBackend()
    return CacheLockBackend(alias=conf.get("LOCK_CACHE_ALIAS"))


@contextmanager
def lock(
    key: str,
    timeout: float | None = 3.0,
    backend: LockBackend | None = None,
) -> Iterator[None]:
    """
    Hold a named lock for the duration of the block.

    Only one execution across all workers sharing the backend may hold a
    given key at a time.

    Parameters
    ----------
    key : str
        Lock identifier derived from business context, e.g.
        "stock-holds:reap".

    timeout : float | None, default=3.0
        Seconds to wait for the lock. None blocks indefinitely.

    backend : LockBackend | None
        Backend override. Defaults to `get_backend()`.

    Raises
    ------
    LockAcquireTimeout
        If the lock cannot be acquired within the timeout.

    Example
    -------
    >>> with lock("stock-holds:reap", timeout=0.5):
    ...     reap()
    """
    be = backend or get_backend()

    if not be.acquire(key, timeout):
        raise LockAcquireTimeout(
            f"Failed to acquire lock for key='{key}' within timeout={timeout}s"
        )

    try:
        yield
    finally:
        be.release(key)
