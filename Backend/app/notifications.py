"""
Reminder Notifications

Turns reminder candidates from the scan into SMS messages. This module owns
the "already reminded" marker: a booking is claimed in the ledger for its
current start before sending, so running the scan twice inside the same
window sends nothing new, while a rescheduled booking is reminded again.

If every recipient of a booking fails, the claim is released so the next
scan tries again. If only some fail, the claim is kept to avoid repeating
the messages that did go out.
"""

import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .booking.errors import NotificationDeliveryFailure
from .booking.reminders import ReminderCandidate, ReminderDispatcherBase, ReminderRecipient
from .core.config import get_settings
from .models import BookingReminder
from .sms import send_sms

logger = logging.getLogger(__name__)
settings = get_settings()

SendSms = Callable[[str, str], Awaitable[bool]]


# ────────────────────────────────────────────────────────────────
# Idempotency ledger
# ────────────────────────────────────────────────────────────────

class InMemoryReminderLedger:
    def __init__(self):
        self.claimed: set[tuple[uuid.UUID, datetime]] = set()

    async def claim(self, booking_id: uuid.UUID, start_at_utc: datetime) -> bool:
        key = (booking_id, start_at_utc)
        if key in self.claimed:
            return False
        self.claimed.add(key)
        return True

    async def release(self, booking_id: uuid.UUID, start_at_utc: datetime) -> None:
        self.claimed.discard((booking_id, start_at_utc))


class SqlReminderLedger:
    """One ``booking_reminders`` row per reminded (booking, start); the primary key makes claims atomic."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def claim(self, booking_id: uuid.UUID, start_at_utc: datetime) -> bool:
        async with self.session_factory() as session:
            claimed = await session.scalar(
                insert(BookingReminder)
                .values(booking_id=booking_id, start_at_utc=start_at_utc)
                .on_conflict_do_nothing(
                    index_elements=[BookingReminder.booking_id, BookingReminder.start_at_utc]
                )
                .returning(BookingReminder.booking_id)
            )
            await session.commit()
        return claimed is not None

    async def release(self, booking_id: uuid.UUID, start_at_utc: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(
                delete(BookingReminder).where(
                    BookingReminder.booking_id == booking_id,
                    BookingReminder.start_at_utc == start_at_utc,
                )
            )
            await session.commit()


# ────────────────────────────────────────────────────────────────
# Message formatting
# ────────────────────────────────────────────────────────────────

def format_local_time(value: datetime, tz_name: Optional[str] = None) -> str:
    local = value.astimezone(ZoneInfo(tz_name or settings.booking_timezone))
    return local.strftime("%I:%M %p").lstrip("0")


def build_reminder_message(candidate: ReminderCandidate, recipient: ReminderRecipient, tz_name: Optional[str] = None) -> str:
    when = format_local_time(candidate.booking.start_at_utc, tz_name)
    if recipient.role == "client":
        barber = candidate.provider.name or "Your Barber"
        return (
            "⏰ Appointment Reminder!\n\n"
            "Your appointment is coming up:\n"
            f"Service: {candidate.service_name}\n"
            f"Time: {when}\n"
            f"Barber: {barber}\n\n"
            "See you soon!"
        )
    client = candidate.booking.customer_name or "Guest"
    return (
        "⏰ Appointment Reminder!\n\n"
        "You have an appointment coming up:\n"
        f"Client: {client}\n"
        f"Service: {candidate.service_name}\n"
        f"Time: {when}"
    )


# ────────────────────────────────────────────────────────────────
# Dispatcher
# ────────────────────────────────────────────────────────────────

class ReminderDispatcher(ReminderDispatcherBase):
    def __init__(self, ledger, send: SendSms = send_sms, tz_name: Optional[str] = None):
        self.ledger = ledger
        self.send = send
        self.tz_name = tz_name

    async def dispatch(self, candidate: ReminderCandidate) -> bool:
        booking_id = candidate.booking.id
        start_at_utc = candidate.booking.start_at_utc
        if not await self.ledger.claim(booking_id, start_at_utc):
            logger.info(f"Reminder for booking {booking_id} already sent; skipping")
            return False

        failed_roles = []
        for recipient in candidate.recipients:
            body = build_reminder_message(candidate, recipient, self.tz_name)
            try:
                delivered = await self.send(recipient.phone, body)
            except Exception as e:
                logger.exception(f"SMS sender raised for booking {booking_id} ({recipient.role}): {e}")
                delivered = False
            if not delivered:
                failed_roles.append(recipient.role)

        if not failed_roles:
            return True

        if len(failed_roles) == len(candidate.recipients):
            await self.ledger.release(booking_id, start_at_utc)
        raise NotificationDeliveryFailure(booking_id, ",".join(failed_roles), "SMS send failed")
