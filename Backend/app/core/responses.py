"""
Standardized API Response Module

Every booking endpoint answers with the same envelope.

RESPONSE FORMAT:
    Success:
        {
            "data": <response data>,
            "status": "success"
        }

    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }

ERROR CODES:
    - SERVICE_NOT_FOUND: The booking references a service that does not exist
    - BOOKING_NOT_FOUND: Reschedule/status change on an unknown booking
    - BOOKING_CONFLICT: The requested interval overlaps an existing booking
    - INVALID_BOOKING: The request can never succeed as sent
    - STORAGE_UNAVAILABLE: Transient storage failure, retry with backoff
    - VALIDATION_ERROR: Request body failed validation
"""

from typing import Any, Optional


class ErrorCodes:
    """Standard error codes for API responses."""

    # 400
    SERVICE_NOT_FOUND = "SERVICE_NOT_FOUND"
    INVALID_BOOKING = "INVALID_BOOKING"

    # 404
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"

    # 409
    BOOKING_CONFLICT = "BOOKING_CONFLICT"

    # 422
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # 503
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"

    # Never surfaced over HTTP; used in reminder scan results
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"


def success_response(data: Any) -> dict:
    """Create a standardized success response dict."""
    return {"data": data, "status": "success"}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Create a standardized error response dict."""
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response
