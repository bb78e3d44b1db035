import hashlib


def key_to_int64(key: str) -> int:
    """
    Map a lock key such as "stock-holds:reap" to a signed 64-bit integer.

    pg_advisory_lock only accepts a BIGINT, so string keys are hashed with an
    8-byte BLAKE2b digest (stable across processes and Python versions) and
    folded into PostgreSQL's signed range.
    """
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, byteorder="big", signed=False)

    # unsigned -> signed int64
    if value >= 2**63:
        value -= 2**64

    return value
