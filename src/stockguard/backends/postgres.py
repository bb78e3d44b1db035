import time

from django.db import connection

from ..hashing import key_to_int64


class PostgresAdvisoryLockBackend:
    """
    Lock backend built on PostgreSQL advisory locks.

    Locks are scoped to the current database connection: if the worker dies
    and its connection closes, PostgreSQL drops the lock. Every worker
    connected to the same cluster competes for the same lock ids, which is
    what serialises the expired-hold sweep across processes and machines.

    Timeout behavior
    ----------------
    - timeout=None: block in pg_advisory_lock until acquired.
    - timeout=float: poll pg_try_advisory_lock until the deadline so the
      connection is never parked indefinitely.
    """

    poll_interval = 0.05

    def acquire(self, key: str, timeout: float | None) -> bool:
        lock_id = key_to_int64(key)

        if timeout is None:
            with connection.cursor() as cursor:
                cursor.execute("SELECT pg_advisory_lock(%s);", [lock_id])
            return True

        deadline = time.monotonic() + timeout

        while True:
            with connection.cursor() as cursor:
                cursor.execute("SELECT pg_try_advisory_lock(%s);", [lock_id])
                acquired = cursor.fetchone()[0]

            if acquired:
                return True
            if time.monotonic() >= deadline:
                return False

            time.sleep(self.poll_interval)

    def release(self, key: str) -> None:
        # PostgreSQL ignores unlocks for ids this connection does not hold.
        lock_id = key_to_int64(key)

        with connection.cursor() as cursor:
            cursor.execute("SELECT pg_advisory_unlock(%s);", [lock_id])
