"""
In-memory transactional booking store.

Behaves like a READ COMMITTED database with exclusive row locks:
    - provider, booking-row and advisory locks are asyncio locks held by the
      transaction until it commits or rolls back
    - writes are buffered per transaction and become visible at commit
    - a lock wait longer than ``lock_timeout`` seconds fails with
      ``TransientStorageError``, like PostgreSQL's ``lock_timeout``

Used by the test suite and for running the API without a database.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Hashable, Optional

from .errors import TransientStorageError
from .store import BookingDetails, BookingRecord, BookingStore, BookingTransaction, ProviderContact

logger = logging.getLogger(__name__)


class InMemoryBookingTransaction(BookingTransaction):
    def __init__(self, store: "InMemoryBookingStore"):
        self.store = store
        self._pending: dict[uuid.UUID, BookingRecord] = {}
        self._held: list[tuple[str, Hashable]] = []

    async def _acquire(self, table: str, key: Hashable) -> None:
        if (table, key) in self._held:
            return
        lock = self.store._locks[table][key]
        try:
            if self.store.lock_timeout is None:
                await lock.acquire()
            else:
                await asyncio.wait_for(lock.acquire(), timeout=self.store.lock_timeout)
        except asyncio.TimeoutError:
            raise TransientStorageError(details={"reason": "lock not available", "lock": table})
        self._held.append((table, key))
        # Give waiting transactions a chance to interleave
        await asyncio.sleep(0)

    def _view(self) -> dict[uuid.UUID, BookingRecord]:
        return {**self.store.bookings, **self._pending}

    async def get_service_duration(self, service_id: int) -> Optional[int]:
        await asyncio.sleep(0)
        service = self.store.services.get(service_id)
        return service[1] if service else None

    async def get_booking(self, booking_id: uuid.UUID, lock: bool = False) -> Optional[BookingRecord]:
        if lock:
            await self._acquire("booking", booking_id)
        booking = self._view().get(booking_id)
        return booking.copy() if booking else None

    async def lock_provider(self, provider_id: int) -> bool:
        if provider_id not in self.store.providers:
            return False
        await self._acquire("provider", provider_id)
        return True

    def _matching(self, provider_id, window_start, window_end, exclude_booking_id) -> list[BookingRecord]:
        return sorted(
            (
                b for b in self._view().values()
                if b.provider_id == provider_id
                and b.is_active()
                and b.id != exclude_booking_id
                and b.end_at_utc > window_start
                and b.start_at_utc < window_end
            ),
            key=lambda b: (b.start_at_utc, str(b.id)),
        )

    async def lock_active_bookings(
        self,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
        exclude_booking_id: Optional[uuid.UUID] = None,
    ) -> list[BookingRecord]:
        for booking in self._matching(provider_id, window_start, window_end, exclude_booking_id):
            await self._acquire("booking", booking.id)
        # Re-read after the waits: holders may have committed changes meanwhile
        rows = self._matching(provider_id, window_start, window_end, exclude_booking_id)
        return [b.copy() for b in rows]

    async def acquire_advisory_lock(self, key: tuple[int, int]) -> None:
        await self._acquire("advisory", key)
        self.store.advisory_keys_acquired.append(key)

    async def insert_booking(self, booking: BookingRecord) -> BookingRecord:
        if booking.id in self._view():
            raise ValueError(f"Booking {booking.id} already exists")
        self._pending[booking.id] = booking.copy()
        await asyncio.sleep(0)
        return booking

    async def update_booking(self, booking: BookingRecord) -> BookingRecord:
        if booking.id not in self._view():
            raise LookupError(f"Booking {booking.id} disappeared mid-transaction")
        self._pending[booking.id] = booking.copy()
        await asyncio.sleep(0)
        return booking

    def commit(self) -> None:
        self.store.bookings.update(self._pending)
        self.store.commits += 1

    def rollback(self) -> None:
        self._pending.clear()
        self.store.rollbacks += 1

    def release_locks(self) -> None:
        for table, key in reversed(self._held):
            self.store._locks[table][key].release()
        self._held.clear()


class InMemoryBookingStore(BookingStore):
    def __init__(self, lock_timeout: Optional[float] = None):
        self.lock_timeout = lock_timeout
        self.providers: dict[int, ProviderContact] = {}
        self.services: dict[int, tuple[str, int]] = {}
        self.bookings: dict[uuid.UUID, BookingRecord] = {}
        self._locks: dict[str, dict[Hashable, asyncio.Lock]] = defaultdict(lambda: defaultdict(asyncio.Lock))
        self.advisory_keys_acquired: list[tuple[int, int]] = []
        self.commits = 0
        self.rollbacks = 0

    def add_provider(
        self,
        provider_id: int,
        name: str = "Provider",
        phone: Optional[str] = None,
        sms_notifications: bool = True,
    ) -> None:
        self.providers[provider_id] = ProviderContact(name=name, phone=phone, sms_notifications=sms_notifications)

    def add_service(self, service_id: int, duration_minutes: int, name: str = "Haircut") -> None:
        self.services[service_id] = (name, duration_minutes)

    def add_booking(self, booking: BookingRecord) -> BookingRecord:
        """Seed a committed booking, bypassing the guard."""
        self.bookings[booking.id] = booking.copy()
        return booking

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryBookingTransaction]:
        tx = InMemoryBookingTransaction(self)
        try:
            yield tx
        except BaseException:
            tx.rollback()
            raise
        else:
            tx.commit()
        finally:
            tx.release_locks()

    async def provider_exists(self, provider_id: int) -> bool:
        return provider_id in self.providers

    async def list_active_bookings(
        self,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
    ) -> list[BookingRecord]:
        return sorted(
            (
                b.copy() for b in self.bookings.values()
                if b.provider_id == provider_id
                and b.is_active()
                and b.end_at_utc > window_start
                and b.start_at_utc < window_end
            ),
            key=lambda b: b.start_at_utc,
        )

    async def list_bookings_starting_between(
        self,
        window_start: datetime,
        window_end: datetime,
    ) -> list[BookingDetails]:
        rows = sorted(
            (
                b for b in self.bookings.values()
                if b.is_active() and window_start <= b.start_at_utc <= window_end
            ),
            key=lambda b: b.start_at_utc,
        )
        return [
            BookingDetails(
                booking=b.copy(),
                provider=self.providers.get(b.provider_id, ProviderContact(name="Your Barber")),
                service_name=self.services.get(b.service_id, ("Appointment", 0))[0],
            )
            for b in rows
        ]

    async def get_service_duration(self, service_id: int) -> Optional[int]:
        service = self.services.get(service_id)
        return service[1] if service else None
