import pytest
from django.db import connection

import stockguard.decorators as dec
from stockguard.api import get_backend, lock
from stockguard.backends.cache import CacheLockBackend, CacheRateCounter
from stockguard.backends.postgres import PostgresAdvisoryLockBackend
from stockguard.exceptions import LockAcquireTimeout

# Context manager tests

class DummyBackend:
    def __init__(self):
        self.acquired = []
        self.released = []

    def acquire(self, key: str, timeout: float | None) -> bool:
        self.acquired.append((key, timeout))
        return True

    def release(self, key: str) -> None:
        self.released.append(key)


def test_lock_context_manager_acquires_and_releases():
    be = DummyBackend()

    with lock("test-key", timeout=1.0, backend=be):
        pass

    assert be.acquired == [("test-key", 1.0)]
    assert be.released == ["test-key"]


def test_lock_releases_when_block_raises():
    be = DummyBackend()

    with pytest.raises(RuntimeError):
        with lock("test-key", backend=be):
            raise RuntimeError("boom")

    assert be.released == ["test-key"]


class NeverBackend:
    def acquire(self, key: str, timeout: float | None) -> bool:
        return False

    def release(self, key: str) -> None:
        raise AssertionError("release should not be called")


def test_lock_raises_timeout_when_not_acquired():
    with pytest.raises(LockAcquireTimeout):
        with lock("test-key", timeout=0.1, backend=NeverBackend()):
            pass


def test_default_backend_follows_database_vendor():
    expected = PostgresAdvisoryLockBackend if connection.vendor == "postgresql" else CacheLockBackend
    assert isinstance(get_backend(), expected)


def test_backend_from_settings(settings):
    settings.STOCKGUARD = {"LOCK_BACKEND": "stockguard.backends.postgres.PostgresAdvisoryLockBackend"}
    assert isinstance(get_backend(), PostgresAdvisoryLockBackend)


# Decorator tests (DB-free)

class DummyLock:
    def __enter__(self):
        return None

    def __exit__(self, exc_type, exc, tb):
        return False


def test_decorator_returns_function_result(monkeypatch):
    seen = []
    monkeypatch.setattr(dec, "lock", lambda key, **k: seen.append(key) or DummyLock())

    @dec.exclusive(key="holds:{reference}")
    def f(reference, n=1):
        return n + 1

    assert f("order-7", n=41) == 42
    assert seen == ["holds:order-7"]


def test_decorator_reports_missing_template_argument(monkeypatch):
    monkeypatch.setattr(dec, "lock", lambda *a, **k: DummyLock())

    @dec.exclusive(key="holds:{missing}")
    def f(reference):
        return reference

    with pytest.raises(KeyError):
        f("order-7")


def _busy(*args, **kwargs):
    raise LockAcquireTimeout()


def test_decorator_return_none_on_conflict(monkeypatch):
    monkeypatch.setattr(dec, "lock", _busy)

    @dec.exclusive(key="sweep", on_conflict="return_none")
    def f():
        raise AssertionError("must not run")

    assert f() is None


def test_decorator_calls_handler_on_conflict(monkeypatch):
    monkeypatch.setattr(dec, "lock", _busy)

    @dec.exclusive(key="sweep", on_conflict=lambda x: f"busy:{x}")
    def f(x):
        raise AssertionError("must not run")

    assert f(3) == "busy:3"


def test_decorator_rejects_unknown_policy():
    with pytest.raises(ValueError):
        dec.exclusive(key="sweep", on_conflict="return_409")


def test_lock_key_uses_parameter_defaults():
    def release(reference, scope="checkout"):
        return None

    assert dec.lock_key("{scope}:{reference}", release, ("order-7",), {}) == "checkout:order-7"


def test_decorator_reads_timeout_lazily(monkeypatch):
    seen = []
    monkeypatch.setattr(dec, "lock", lambda key, timeout: seen.append(timeout) or DummyLock())

    @dec.exclusive(key="sweep", timeout=lambda: 0.25)
    def f():
        return "done"

    assert f() == "done"
    assert seen == [0.25]


# Cache backend

def test_cache_lock_excludes_second_holder():
    first = CacheLockBackend()
    second = CacheLockBackend()

    assert first.acquire("stock-holds:reap", timeout=0.1)
    assert not second.acquire("stock-holds:reap", timeout=0.1)

    first.release("stock-holds:reap")
    assert second.acquire("stock-holds:reap", timeout=0.1)
    second.release("stock-holds:reap")


def test_cache_lock_release_without_acquire_is_harmless():
    holder = CacheLockBackend()
    other = CacheLockBackend()
    assert holder.acquire("k", timeout=0)

    other.release("k")

    assert not other.acquire("k", timeout=0)
    holder.release("k")


def test_cache_lock_release_after_expiry_keeps_new_owner():
    from django.core.cache import cache

    first = CacheLockBackend()
    second = CacheLockBackend()
    assert first.acquire("stock-holds:reap", timeout=0)

    # The first lock times out and the sweep moves on to another worker.
    cache.delete(first._cache_key("stock-holds:reap"))
    assert second.acquire("stock-holds:reap", timeout=0)

    first.release("stock-holds:reap")

    assert not CacheLockBackend().acquire("stock-holds:reap", timeout=0)
    second.release("stock-holds:reap")


def test_rate_counter_counts_within_window():
    counter = CacheRateCounter()

    decisions = [counter.hit("stock:10.0.0.1", limit=2, window=60) for _ in range(3)]

    assert [d.allowed for d in decisions] == [True, True, False]
    assert [d.remaining for d in decisions] == [1, 0, 0]
    assert counter.hit("stock:10.0.0.2", limit=2, window=60).allowed
