import threading
import time
import uuid
from dataclasses import dataclass

from django.core.cache import caches


class CacheLockBackend:
    """
    Lock backend built on the Django cache.

    Acquisition is a single ``cache.add`` (set-if-absent), so with a shared
    cache (Redis, Memcached) the lock holds across every process and host
    talking to it. With the local-memory cache it only covers one process,
    which is enough for tests and single-worker deployments.

    Each lock expires after ``ttl`` seconds so a crashed holder cannot block
    the key forever. Protected sections must finish well within that.
    """

    poll_interval = 0.05

    def __init__(self, alias: str = "default", ttl: int = 60, prefix: str = "stockguard:lock") -> None:
        self.alias = alias
        self.ttl = ttl
        self.prefix = prefix
        self._tokens = threading.local()

    def _cache_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def _held(self) -> dict[str, str]:
        held = getattr(self._tokens, "held", None)
        if held is None:
            held = self._tokens.held = {}
        return held

    def acquire(self, key: str, timeout: float | None) -> bool:
        cache = caches[self.alias]
        token = uuid.uuid4().hex
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            if cache.add(self._cache_key(key), token, timeout=self.ttl):
                self._held()[key] = token
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(self.poll_interval)

    def release(self, key: str) -> None:
        """
        Drop the lock if this backend still owns it.

        Django's cache API has no compare-and-delete, so ownership is checked
        with a ``get`` followed by a ``delete``. A lock whose ``ttl`` runs out
        between the two and is taken by another worker in that instant is
        deleted anyway. Keep ``ttl`` far above the time the protected section
        needs.
        """
        token = self._held().pop(key, None)
        if token is None:
            return

        cache = caches[self.alias]
        if cache.get(self._cache_key(key)) == token:
            cache.delete(self._cache_key(key))


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    count: int
    remaining: int


class CacheRateCounter:
    """
    Fixed-window request counter stored in the Django cache.

    The window starts with the first hit and the counter expires with it, so
    there is no process-local state to reset or keep in sync.
    """

    def __init__(self, alias: str = "default", prefix: str = "stockguard:rate") -> None:
        self.alias = alias
        self.prefix = prefix

    def hit(self, key: str, limit: int, window: int) -> RateDecision:
        cache = caches[self.alias]
        cache_key = f"{self.prefix}:{key}"

        cache.add(cache_key, 0, timeout=window)
        try:
            count = cache.incr(cache_key)
        except ValueError:
            # Window expired between add() and incr(): start a fresh one.
            cache.set(cache_key, 1, timeout=window)
            count = 1

        return RateDecision(
            allowed=count <= limit,
            count=count,
            remaining=max(limit - count, 0),
        )
