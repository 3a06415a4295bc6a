"""
Reminder Scan

Selects non-cancelled bookings starting within the lookahead window and
hands them to a dispatcher. The scan is a plain read: no locks, no writes.
"Now" is always passed in so a scan can be replayed.

One failed delivery never stops the batch; it is logged and counted.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from .errors import NotificationDeliveryFailure
from .store import BookingDetails, BookingRecord, BookingStore, ProviderContact

logger = logging.getLogger(__name__)

DEFAULT_LOOKAHEAD = timedelta(hours=1)


@dataclass(frozen=True)
class ReminderRecipient:
    role: str  # "client" or "provider"
    phone: str
    name: Optional[str] = None


@dataclass(frozen=True)
class ReminderCandidate:
    booking: BookingRecord
    provider: ProviderContact
    service_name: str
    recipients: tuple[ReminderRecipient, ...]


@dataclass
class ReminderScanResult:
    window_start: datetime
    window_end: datetime
    sent: list[uuid.UUID] = field(default_factory=list)
    skipped: list[uuid.UUID] = field(default_factory=list)
    failed: dict[uuid.UUID, str] = field(default_factory=dict)

    def summary(self) -> dict:
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "sent": len(self.sent),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
        }


class ReminderDispatcherBase:
    async def dispatch(self, candidate: ReminderCandidate) -> bool:
        """Deliver one reminder. False means it was already sent before.

        Raises NotificationDeliveryFailure when delivery fails.
        """
        raise NotImplementedError


def recipients_for(details: BookingDetails) -> tuple[ReminderRecipient, ...]:
    booking = details.booking
    recipients = []
    if booking.customer_phone and booking.customer_sms_opt_in:
        recipients.append(ReminderRecipient("client", booking.customer_phone, booking.customer_name))
    if details.provider.phone and details.provider.sms_notifications:
        recipients.append(ReminderRecipient("provider", details.provider.phone, details.provider.name))
    return tuple(recipients)


async def scan_due_reminders(
    store: BookingStore,
    now: datetime,
    lookahead: timedelta = DEFAULT_LOOKAHEAD,
) -> list[ReminderCandidate]:
    if now.tzinfo is None:
        raise ValueError("Reminder scan needs a timezone-aware 'now'")

    due = await store.list_bookings_starting_between(now, now + lookahead)
    candidates = []
    for details in due:
        recipients = recipients_for(details)
        if not recipients:
            logger.debug(f"Booking {details.booking.id} has no SMS recipients; no reminder")
            continue
        candidates.append(
            ReminderCandidate(
                booking=details.booking,
                provider=details.provider,
                service_name=details.service_name,
                recipients=recipients,
            )
        )
    return candidates


async def run_reminder_scan(
    store: BookingStore,
    dispatcher: ReminderDispatcherBase,
    now: datetime,
    lookahead: timedelta = DEFAULT_LOOKAHEAD,
) -> ReminderScanResult:
    result = ReminderScanResult(window_start=now, window_end=now + lookahead)
    candidates = await scan_due_reminders(store, now, lookahead)
    logger.info(
        f"Reminder scan {result.window_start.isoformat()} -> {result.window_end.isoformat()}: "
        f"{len(candidates)} booking(s) due"
    )

    for candidate in candidates:
        booking_id = candidate.booking.id
        try:
            if await dispatcher.dispatch(candidate):
                result.sent.append(booking_id)
            else:
                result.skipped.append(booking_id)
        except NotificationDeliveryFailure as exc:
            logger.error(f"Failed to send reminder for booking {booking_id}: {exc.reason}")
            result.failed[booking_id] = exc.reason
        except Exception as exc:
            logger.exception(f"Unexpected error sending reminder for booking {booking_id}: {exc}")
            result.failed[booking_id] = str(exc)

    logger.info(f"Reminder scan completed: {result.summary()}")
    return result
