"""
PostgreSQL booking store.

Row-level locking uses ``SELECT ... FOR UPDATE`` and the slot lock uses
``pg_advisory_xact_lock(int4, int4)``; both are released by PostgreSQL when
the surrounding transaction commits or rolls back.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import Booking, BookingStatus, Provider, Service
from .errors import TransientStorageError
from .store import BookingDetails, BookingRecord, BookingStore, BookingTransaction, ProviderContact

logger = logging.getLogger(__name__)

# SQLSTATEs worth retrying: the same statement can succeed on a later attempt.
RETRYABLE_SQLSTATES = {
    "40P01": "deadlock detected",
    "40001": "serialization failure",
    "55P03": "lock not available",
    "57014": "statement timeout",
}


def sqlstate_of(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_retryable(exc: DBAPIError) -> bool:
    return bool(exc.connection_invalidated) or sqlstate_of(exc) in RETRYABLE_SQLSTATES


def to_record(row: Booking) -> BookingRecord:
    return BookingRecord(
        id=row.id,
        provider_id=row.provider_id,
        service_id=row.service_id,
        start_at_utc=row.start_at_utc,
        end_at_utc=row.end_at_utc,
        status=row.status,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        customer_sms_opt_in=row.customer_sms_opt_in,
    )


def _apply(row: Booking, record: BookingRecord) -> Booking:
    row.provider_id = record.provider_id
    row.service_id = record.service_id
    row.start_at_utc = record.start_at_utc
    row.end_at_utc = record.end_at_utc
    row.status = record.status
    row.customer_name = record.customer_name
    row.customer_phone = record.customer_phone
    row.customer_sms_opt_in = record.customer_sms_opt_in
    return row


class SqlBookingTransaction(BookingTransaction):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_service_duration(self, service_id: int) -> Optional[int]:
        return await self.session.scalar(
            select(Service.duration_minutes).where(Service.id == service_id)
        )

    async def get_booking(self, booking_id: uuid.UUID, lock: bool = False) -> Optional[BookingRecord]:
        stmt = select(Booking).where(Booking.id == booking_id)
        if lock:
            stmt = stmt.with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return to_record(row) if row else None

    async def lock_provider(self, provider_id: int) -> bool:
        locked_id = await self.session.scalar(
            select(Provider.id).where(Provider.id == provider_id).with_for_update()
        )
        return locked_id is not None

    async def lock_active_bookings(
        self,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
        exclude_booking_id: Optional[uuid.UUID] = None,
    ) -> list[BookingRecord]:
        stmt = select(Booking).where(
            Booking.provider_id == provider_id,
            Booking.status != BookingStatus.CANCELLED,
            Booking.end_at_utc > window_start,
            Booking.start_at_utc < window_end,
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        stmt = stmt.order_by(Booking.start_at_utc, Booking.id).with_for_update()
        result = await self.session.execute(stmt)
        return [to_record(row) for row in result.scalars().all()]

    async def acquire_advisory_lock(self, key: tuple[int, int]) -> None:
        # Savepoint so a failed lock attempt leaves the outer transaction usable
        try:
            async with self.session.begin_nested():
                await self.session.execute(select(func.pg_advisory_xact_lock(key[0], key[1])))
        except DBAPIError as exc:
            if is_retryable(exc):
                raise TransientStorageError(
                    f"Advisory lock unavailable: {RETRYABLE_SQLSTATES.get(sqlstate_of(exc), 'connection lost')}"
                ) from exc
            raise

    async def insert_booking(self, booking: BookingRecord) -> BookingRecord:
        row = _apply(Booking(id=booking.id), booking)
        self.session.add(row)
        await self.session.flush()
        return booking

    async def update_booking(self, booking: BookingRecord) -> BookingRecord:
        row = await self.session.get(Booking, booking.id)
        if row is None:
            raise LookupError(f"Booking {booking.id} disappeared mid-transaction")
        _apply(row, booking)
        await self.session.flush()
        return booking


class SqlBookingStore(BookingStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], lock_timeout_ms: int = 0):
        self.session_factory = session_factory
        self.lock_timeout_ms = lock_timeout_ms

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlBookingTransaction]:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    if self.lock_timeout_ms > 0:
                        await session.execute(
                            select(func.set_config("lock_timeout", f"{self.lock_timeout_ms}ms", True))
                        )
                    yield SqlBookingTransaction(session)
            except DBAPIError as exc:
                if is_retryable(exc):
                    reason = RETRYABLE_SQLSTATES.get(sqlstate_of(exc), "connection lost")
                    logger.warning(f"Booking transaction rolled back ({reason}); caller may retry")
                    raise TransientStorageError(details={"reason": reason}) from exc
                raise

    async def provider_exists(self, provider_id: int) -> bool:
        async with self.session_factory() as session:
            found = await session.scalar(select(Provider.id).where(Provider.id == provider_id))
        return found is not None

    async def list_active_bookings(
        self,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
    ) -> list[BookingRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Booking)
                .where(
                    Booking.provider_id == provider_id,
                    Booking.status != BookingStatus.CANCELLED,
                    Booking.end_at_utc > window_start,
                    Booking.start_at_utc < window_end,
                )
                .order_by(Booking.start_at_utc)
            )
            return [to_record(row) for row in result.scalars().all()]

    async def list_bookings_starting_between(
        self,
        window_start: datetime,
        window_end: datetime,
    ) -> list[BookingDetails]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Booking, Provider, Service.name)
                .join(Provider, Provider.id == Booking.provider_id)
                .join(Service, Service.id == Booking.service_id)
                .where(
                    Booking.status != BookingStatus.CANCELLED,
                    Booking.start_at_utc >= window_start,
                    Booking.start_at_utc <= window_end,
                )
                .order_by(Booking.start_at_utc)
            )
            return [
                BookingDetails(
                    booking=to_record(booking),
                    provider=ProviderContact(
                        name=provider.name,
                        phone=provider.phone,
                        sms_notifications=provider.sms_notifications,
                    ),
                    service_name=service_name,
                )
                for booking, provider, service_name in result.all()
            ]

    async def get_service_duration(self, service_id: int) -> Optional[int]:
        async with self.session_factory() as session:
            return await session.scalar(select(Service.duration_minutes).where(Service.id == service_id))
