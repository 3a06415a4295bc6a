"""
Booking error taxonomy.

Each error carries the code and HTTP status the API layer renders, so the
guard can raise them without knowing about FastAPI.
"""

from typing import Any, Optional

from ..core.responses import ErrorCodes


class BookingError(Exception):
    """Base class for every outcome of a booking write other than success."""

    code: str = ErrorCodes.INVALID_BOOKING
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ServiceNotFound(BookingError):
    """The referenced service does not exist. Fatal for the request."""

    code = ErrorCodes.SERVICE_NOT_FOUND
    status_code = 400

    def __init__(self, service_id: int):
        super().__init__("Service not found", details={"service_id": service_id})
        self.service_id = service_id


class BookingConflict(BookingError):
    """The interval overlaps a non-cancelled booking for the same provider."""

    code = ErrorCodes.BOOKING_CONFLICT
    status_code = 409

    def __init__(self, provider_id: int, conflicting_ids: Optional[list] = None):
        super().__init__(
            "This time is no longer available. Please choose another time.",
            details={"provider_id": provider_id},
        )
        self.provider_id = provider_id
        self.conflicting_ids = conflicting_ids or []


class BookingNotFound(BookingError):
    code = ErrorCodes.BOOKING_NOT_FOUND
    status_code = 404

    def __init__(self, booking_id):
        super().__init__("Booking not found", details={"booking_id": str(booking_id)})
        self.booking_id = booking_id


class InvalidBookingRequest(BookingError):
    code = ErrorCodes.INVALID_BOOKING
    status_code = 400


class TransientStorageError(BookingError):
    """Deadlock, lock timeout or lost connection. Safe to retry with backoff."""

    code = ErrorCodes.STORAGE_UNAVAILABLE
    status_code = 503
    retryable = True

    def __init__(self, message: str = "Booking storage is temporarily unavailable", details=None):
        super().__init__(message, details=details)


class NotificationDeliveryFailure(BookingError):
    """A reminder could not be delivered. Logged per booking, never fatal to a scan."""

    code = ErrorCodes.NOTIFICATION_FAILED
    status_code = 502

    def __init__(self, booking_id, recipient: str, reason: str):
        super().__init__(
            f"Failed to deliver reminder for booking {booking_id} to {recipient}: {reason}",
            details={"booking_id": str(booking_id), "recipient": recipient},
        )
        self.booking_id = booking_id
        self.recipient = recipient
        self.reason = reason
