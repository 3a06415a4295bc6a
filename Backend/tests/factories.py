"""
Shared test data: ids, instants and a pre-seeded in-memory store.
"""
from datetime import datetime, timedelta, timezone

from app.booking import BookingRecord, InMemoryBookingStore
from app.models import BookingStatus

PROVIDER_ID = 1
OTHER_PROVIDER_ID = 2
UNKNOWN_PROVIDER_ID = 404

HAIRCUT_ID = 10       # 60 minutes
TRIM_ID = 11          # 30 minutes
CONSULT_ID = 12       # 0 minutes
BROKEN_SERVICE_ID = 13  # negative duration
MISSING_SERVICE_ID = 999

PROVIDER_PHONE = "+16025550101"
CLIENT_PHONE = "+16025550199"


def at(hour: int, minute: int = 0, day: int = 2) -> datetime:
    """An instant on 2026-03-<day> in UTC."""
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


def make_booking(
    start: datetime,
    minutes: int = 60,
    provider_id: int = PROVIDER_ID,
    service_id: int = HAIRCUT_ID,
    status: BookingStatus = BookingStatus.CONFIRMED,
    **extra,
) -> BookingRecord:
    return BookingRecord(
        provider_id=provider_id,
        service_id=service_id,
        start_at_utc=start,
        end_at_utc=start + timedelta(minutes=minutes),
        status=status,
        **extra,
    )


def seeded_store(lock_timeout: float | None = 2.0) -> InMemoryBookingStore:
    store = InMemoryBookingStore(lock_timeout=lock_timeout)
    store.add_provider(PROVIDER_ID, name="Marcus", phone=PROVIDER_PHONE)
    store.add_provider(OTHER_PROVIDER_ID, name="Dana")
    store.add_service(HAIRCUT_ID, 60, name="Haircut")
    store.add_service(TRIM_ID, 30, name="Beard Trim")
    store.add_service(CONSULT_ID, 0, name="Consultation")
    store.add_service(BROKEN_SERVICE_ID, -15, name="Broken")
    return store
