"""
Booking conflict detection and concurrency control.

- intervals: pure interval arithmetic (client preflight and server guard)
- guard: transactional conflict guard and the write operations using it
- slot_lock: advisory lock keyed by provider + time bucket
- reminders: read-only scan of upcoming bookings
- store / sql_store / memory_store: storage collaborator and its backends
"""
from .errors import (
    BookingConflict,
    BookingError,
    BookingNotFound,
    InvalidBookingRequest,
    NotificationDeliveryFailure,
    ServiceNotFound,
    TransientStorageError,
)
from .guard import (
    PreflightResult,
    create_booking,
    enforce_no_conflict,
    preflight_booking,
    reschedule_booking,
    update_booking_status,
    with_transient_retry,
)
from .intervals import BookingInterval, compute_end, overlaps, validate_duration
from .memory_store import InMemoryBookingStore
from .reminders import ReminderCandidate, ReminderScanResult, run_reminder_scan, scan_due_reminders
from .slot_lock import acquire_slot_lock, bucket_start, slot_lock_key
from .sql_store import SqlBookingStore
from .store import BookingRecord, BookingStore

__all__ = [
    # Errors
    "BookingConflict",
    "BookingError",
    "BookingNotFound",
    "InvalidBookingRequest",
    "NotificationDeliveryFailure",
    "ServiceNotFound",
    "TransientStorageError",
    # Guard
    "PreflightResult",
    "create_booking",
    "enforce_no_conflict",
    "preflight_booking",
    "reschedule_booking",
    "update_booking_status",
    "with_transient_retry",
    # Intervals
    "BookingInterval",
    "compute_end",
    "overlaps",
    "validate_duration",
    # Reminders
    "ReminderCandidate",
    "ReminderScanResult",
    "run_reminder_scan",
    "scan_due_reminders",
    # Slot lock
    "acquire_slot_lock",
    "bucket_start",
    "slot_lock_key",
    # Stores
    "BookingRecord",
    "BookingStore",
    "InMemoryBookingStore",
    "SqlBookingStore",
]
