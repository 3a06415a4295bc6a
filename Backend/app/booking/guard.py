"""
Transactional Conflict Guard

Every booking write goes through ``enforce_no_conflict`` inside the same
transaction as the insert/update:

    1. resolve the service duration (ServiceNotFound if missing)
    2. recompute end = start + duration, discarding any caller-supplied end
    3. lock the provider row, then lock that provider's non-cancelled
       bookings that could overlap, ordered by start
    4. count true overlaps with ``overlaps``
    5. raise BookingConflict if any; the transaction rolls back

Lock order is always: slot advisory lock -> provider row -> booking rows.
The provider row lock is what blocks a second writer even when there is no
existing booking to lock yet.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from ..models import BookingStatus
from .errors import (
    BookingConflict,
    BookingNotFound,
    InvalidBookingRequest,
    ServiceNotFound,
    TransientStorageError,
)
from .intervals import BookingInterval, compute_end, validate_duration
from .slot_lock import acquire_slot_lock
from .store import BookingRecord, BookingStore, BookingTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

ALLOWED_STATUS_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}

RESCHEDULABLE_STATUSES = {BookingStatus.PENDING, BookingStatus.CONFIRMED}


async def lock_provider_scope(
    tx: BookingTransaction,
    provider_id: int,
    start: datetime,
    slot_lock_bucket_seconds: Optional[int] = None,
) -> None:
    """Take the optional slot lock, then the provider row lock."""
    if slot_lock_bucket_seconds:
        await acquire_slot_lock(tx, provider_id, start, slot_lock_bucket_seconds)
    if not await tx.lock_provider(provider_id):
        raise InvalidBookingRequest("Provider not found", details={"provider_id": provider_id})


async def enforce_no_conflict(
    tx: BookingTransaction,
    candidate: BookingRecord,
    slot_lock_bucket_seconds: Optional[int] = None,
) -> BookingRecord:
    """Return ``candidate`` with its end recomputed, or raise BookingConflict.

    The rows that could conflict stay locked until ``tx`` ends.
    """
    duration = await tx.get_service_duration(candidate.service_id)
    if duration is None:
        raise ServiceNotFound(candidate.service_id)
    try:
        validate_duration(duration)
    except ValueError as exc:
        raise InvalidBookingRequest(str(exc), details={"service_id": candidate.service_id})

    candidate = candidate.copy(end_at_utc=compute_end(candidate.start_at_utc, duration))

    await lock_provider_scope(tx, candidate.provider_id, candidate.start_at_utc, slot_lock_bucket_seconds)

    if not candidate.is_active():
        return candidate

    locked = await tx.lock_active_bookings(
        candidate.provider_id,
        candidate.start_at_utc,
        candidate.end_at_utc,
        exclude_booking_id=candidate.id,
    )
    conflicting = [b.id for b in locked if candidate.interval.overlaps(b.interval)]
    if conflicting:
        logger.warning(
            f"Booking conflict for provider {candidate.provider_id} at "
            f"{candidate.start_at_utc.isoformat()}: {len(conflicting)} overlapping booking(s)"
        )
        raise BookingConflict(candidate.provider_id, conflicting)

    return candidate


async def create_booking(
    store: BookingStore,
    candidate: BookingRecord,
    slot_lock_bucket_seconds: Optional[int] = None,
) -> BookingRecord:
    async with store.transaction() as tx:
        booking = await enforce_no_conflict(tx, candidate, slot_lock_bucket_seconds)
        await tx.insert_booking(booking)

    logger.info(
        f"Booking {booking.id} created for provider {booking.provider_id}: "
        f"{booking.start_at_utc.isoformat()} - {booking.end_at_utc.isoformat()}"
    )
    return booking


async def reschedule_booking(
    store: BookingStore,
    booking_id: uuid.UUID,
    new_start: datetime,
    slot_lock_bucket_seconds: Optional[int] = None,
) -> BookingRecord:
    """Move a booking; start and the derived end change in one write."""
    async with store.transaction() as tx:
        current = await tx.get_booking(booking_id)
        if current is None:
            raise BookingNotFound(booking_id)

        await lock_provider_scope(tx, current.provider_id, new_start, slot_lock_bucket_seconds)
        current = await tx.get_booking(booking_id, lock=True)
        if current is None:
            raise BookingNotFound(booking_id)
        if current.status not in RESCHEDULABLE_STATUSES:
            raise InvalidBookingRequest(
                f"Cannot reschedule a {current.status.value} booking",
                details={"booking_id": str(booking_id), "status": current.status.value},
            )

        booking = await enforce_no_conflict(
            tx, current.copy(start_at_utc=new_start), slot_lock_bucket_seconds
        )
        await tx.update_booking(booking)

    logger.info(f"Booking {booking.id} rescheduled to {booking.start_at_utc.isoformat()}")
    return booking


async def update_booking_status(
    store: BookingStore,
    booking_id: uuid.UUID,
    status: BookingStatus,
) -> BookingRecord:
    async with store.transaction() as tx:
        current = await tx.get_booking(booking_id)
        if current is None:
            raise BookingNotFound(booking_id)

        await tx.lock_provider(current.provider_id)
        current = await tx.get_booking(booking_id, lock=True)
        if current is None:
            raise BookingNotFound(booking_id)
        if current.status == status:
            return current
        if status not in ALLOWED_STATUS_TRANSITIONS[current.status]:
            raise InvalidBookingRequest(
                f"Cannot change booking from {current.status.value} to {status.value}",
                details={"booking_id": str(booking_id)},
            )

        # No allowed transition re-activates a cancelled booking, so the
        # occupied interval never grows here and needs no overlap check.
        booking = await tx.update_booking(current.copy(status=status))

    logger.info(f"Booking {booking.id} status -> {booking.status.value}")
    return booking


async def with_transient_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    backoff_seconds: float = 0.2,
) -> T:
    """Run ``operation``, retrying only TransientStorageError with exponential backoff.

    BookingConflict and ServiceNotFound propagate on the first attempt: the
    same interval would fail the same way.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except TransientStorageError:
            if attempt >= attempts:
                logger.error(f"Booking write failed after {attempts} attempt(s)")
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(f"Transient storage error (attempt {attempt}/{attempts}); retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
            attempt += 1


@dataclass
class PreflightResult:
    start_at_utc: datetime
    end_at_utc: datetime
    conflicting_ids: list[uuid.UUID]

    @property
    def available(self) -> bool:
        return not self.conflicting_ids


async def preflight_booking(
    store: BookingStore,
    provider_id: int,
    service_id: int,
    start: datetime,
) -> PreflightResult:
    """Non-authoritative availability check: no transaction, no locks.

    A free result can still lose the race at write time.
    """
    if not await store.provider_exists(provider_id):
        raise InvalidBookingRequest("Provider not found", details={"provider_id": provider_id})
    duration = await store.get_service_duration(service_id)
    if duration is None:
        raise ServiceNotFound(service_id)
    try:
        validate_duration(duration)
    except ValueError as exc:
        raise InvalidBookingRequest(str(exc), details={"service_id": service_id})

    probe = BookingInterval(start, compute_end(start, duration))
    existing = await store.list_active_bookings(provider_id, probe.start_at_utc, probe.end_at_utc)
    return PreflightResult(
        start_at_utc=probe.start_at_utc,
        end_at_utc=probe.end_at_utc,
        conflicting_ids=[b.id for b in existing if probe.overlaps(b.interval)],
    )
