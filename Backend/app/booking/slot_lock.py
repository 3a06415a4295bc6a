"""
Slot advisory lock.

Serialises writers aiming at the same provider and the same coarse time
bucket before they reach the row-level conflict check. It detects nothing
on its own: two different (provider, bucket) pairs may share a key, which
only costs some extra waiting because the conflict guard stays the
authority.
"""

import hashlib
import logging
from datetime import datetime, timezone

from .errors import TransientStorageError
from .store import BookingTransaction

logger = logging.getLogger(__name__)

INT32_MIN = -(2**31)
INT32_SPAN = 2**32


def _to_int32(value: int) -> int:
    return (value - INT32_MIN) % INT32_SPAN + INT32_MIN


def bucket_start(start: datetime, bucket_seconds: int = 60) -> datetime:
    """Floor ``start`` to the beginning of its bucket (UTC)."""
    epoch = int(start.timestamp())
    floored = epoch - (epoch % bucket_seconds)
    return datetime.fromtimestamp(floored, tz=timezone.utc)


def slot_lock_key(provider_id, bucket: datetime, bucket_seconds: int = 60) -> tuple[int, int]:
    """Two signed 32-bit halves for ``pg_advisory_xact_lock(int4, int4)``.

    The first half is the first 8 hex digits of md5(provider id), the second
    is the bucket index since the epoch, both wrapped into int32.
    """
    digest = hashlib.md5(str(provider_id).encode("utf-8")).hexdigest()
    provider_half = _to_int32(int(digest[:8], 16))
    bucket_half = _to_int32(int(bucket.timestamp()) // bucket_seconds)
    return provider_half, bucket_half


async def acquire_slot_lock(
    tx: BookingTransaction,
    provider_id,
    start: datetime,
    bucket_seconds: int = 60,
) -> bool:
    """Take the advisory lock for the slot containing ``start``.

    The lock is released when ``tx`` ends. Failing to get it is not fatal:
    the conflict guard still runs, so the error is logged and False returned.
    """
    key = slot_lock_key(provider_id, bucket_start(start, bucket_seconds), bucket_seconds)
    try:
        await tx.acquire_advisory_lock(key)
    except TransientStorageError as exc:
        logger.warning(f"Advisory lock error (non-fatal) for provider {provider_id}: {exc.message}")
        return False
    return True
