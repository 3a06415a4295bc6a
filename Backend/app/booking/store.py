"""
Booking storage collaborator.

The conflict guard talks to storage only through ``BookingStore`` and the
``BookingTransaction`` it hands out, so the same locking procedure runs
against PostgreSQL in production (``sql_store``) and against the in-memory
transactional fake in tests (``memory_store``).

Contract for implementations:
    - ``transaction()`` commits when the block exits normally and rolls back
      when it raises; every lock taken inside is released at that point.
    - ``lock_provider`` / ``lock_active_bookings`` take exclusive locks that
      block other transactions until commit or rollback.
    - ``lock_active_bookings`` locks rows in one pass ordered by start, so two
      transactions never wait on each other in opposite orders.
    - Retryable failures surface as ``TransientStorageError``.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import AsyncContextManager, Optional

from ..models import BookingStatus
from .intervals import BookingInterval


@dataclass
class BookingRecord:
    provider_id: int
    service_id: int
    start_at_utc: datetime
    end_at_utc: datetime
    status: BookingStatus = BookingStatus.PENDING
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_sms_opt_in: bool = False
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def interval(self) -> BookingInterval:
        return BookingInterval(self.start_at_utc, self.end_at_utc)

    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED

    def copy(self, **changes) -> "BookingRecord":
        return replace(self, **changes)


@dataclass(frozen=True)
class ProviderContact:
    name: str
    phone: Optional[str] = None
    sms_notifications: bool = True


@dataclass(frozen=True)
class BookingDetails:
    """A booking joined with what the reminder sender needs to address it."""

    booking: BookingRecord
    provider: ProviderContact
    service_name: str


class BookingTransaction:
    """Operations available inside one storage transaction."""

    async def get_service_duration(self, service_id: int) -> Optional[int]:
        """Duration in minutes, or None when the service does not exist."""
        raise NotImplementedError

    async def get_booking(self, booking_id: uuid.UUID, lock: bool = False) -> Optional[BookingRecord]:
        raise NotImplementedError

    async def lock_provider(self, provider_id: int) -> bool:
        """Exclusively lock the provider row. Returns False if it does not exist."""
        raise NotImplementedError

    async def lock_active_bookings(
        self,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
        exclude_booking_id: Optional[uuid.UUID] = None,
    ) -> list[BookingRecord]:
        """Lock and return non-cancelled bookings that could overlap the window."""
        raise NotImplementedError

    async def acquire_advisory_lock(self, key: tuple[int, int]) -> None:
        """Block until the transaction-scoped advisory lock ``key`` is held."""
        raise NotImplementedError

    async def insert_booking(self, booking: BookingRecord) -> BookingRecord:
        raise NotImplementedError

    async def update_booking(self, booking: BookingRecord) -> BookingRecord:
        raise NotImplementedError


class BookingStore:
    """Entry point to booking storage."""

    def transaction(self) -> AsyncContextManager[BookingTransaction]:
        raise NotImplementedError

    async def provider_exists(self, provider_id: int) -> bool:
        raise NotImplementedError

    async def list_active_bookings(
        self,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
    ) -> list[BookingRecord]:
        """Lock-free read of non-cancelled bookings touching the window."""
        raise NotImplementedError

    async def list_bookings_starting_between(
        self,
        window_start: datetime,
        window_end: datetime,
    ) -> list[BookingDetails]:
        """Lock-free read of non-cancelled bookings with window_start <= start <= window_end."""
        raise NotImplementedError

    async def get_service_duration(self, service_id: int) -> Optional[int]:
        raise NotImplementedError
