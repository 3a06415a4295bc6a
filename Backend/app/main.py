import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .booking import (
    BookingError,
    BookingRecord,
    BookingStore,
    SqlBookingStore,
    create_booking,
    preflight_booking,
    reschedule_booking,
    run_reminder_scan,
    update_booking_status,
    with_transient_retry,
)
from .booking.reminders import ReminderDispatcherBase
from .core.config import get_settings
from .core.db import AsyncSessionLocal, Base, engine
from .core.responses import ErrorCodes, error_response, success_response
from .models import BookingStatus
from .notifications import ReminderDispatcher, SqlReminderLedger


settings = get_settings()
app = FastAPI(title="BOCM Booking Backend")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ────────────────────────────────────────────────────────────────
# Dependencies
# ────────────────────────────────────────────────────────────────

def get_booking_store() -> BookingStore:
    return SqlBookingStore(AsyncSessionLocal, lock_timeout_ms=settings.booking_lock_timeout_ms)


def get_reminder_dispatcher() -> ReminderDispatcherBase:
    return ReminderDispatcher(SqlReminderLedger(AsyncSessionLocal))


def get_slot_lock_bucket() -> Optional[int]:
    return settings.slot_lock_bucket_seconds if settings.slot_lock_enabled else None


def get_now() -> datetime:
    return datetime.now(timezone.utc)


# ────────────────────────────────────────────────────────────────
# Request / response models
# ────────────────────────────────────────────────────────────────

def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("start_time must include a timezone offset")
    return value.astimezone(timezone.utc)


class PreflightRequest(BaseModel):
    provider_id: int
    service_id: int
    start_time: datetime

    @field_validator("start_time")
    @classmethod
    def start_is_aware(cls, value: datetime) -> datetime:
        return _require_aware(value)


class BookingCreateRequest(BaseModel):
    provider_id: int
    service_id: int
    start_time: datetime
    end_time: datetime | None = Field(
        default=None,
        description="Ignored. The end is always start_time + service duration.",
    )
    status: BookingStatus = BookingStatus.PENDING
    customer_name: str | None = Field(default=None, max_length=255)
    customer_phone: str | None = Field(default=None, max_length=32)
    customer_sms_opt_in: bool = False

    @field_validator("start_time")
    @classmethod
    def start_is_aware(cls, value: datetime) -> datetime:
        return _require_aware(value)

    @field_validator("status")
    @classmethod
    def initial_status(cls, value: BookingStatus) -> BookingStatus:
        if value not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise ValueError("New bookings must be pending or confirmed")
        return value


class RescheduleRequest(BaseModel):
    start_time: datetime

    @field_validator("start_time")
    @classmethod
    def start_is_aware(cls, value: datetime) -> datetime:
        return _require_aware(value)


class StatusUpdateRequest(BaseModel):
    status: BookingStatus


class BookingResponse(BaseModel):
    id: uuid.UUID
    provider_id: int
    service_id: int
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    customer_name: str | None = None

    @classmethod
    def from_record(cls, booking: BookingRecord) -> "BookingResponse":
        return cls(
            id=booking.id,
            provider_id=booking.provider_id,
            service_id=booking.service_id,
            start_time=booking.start_at_utc,
            end_time=booking.end_at_utc,
            status=booking.status,
            customer_name=booking.customer_name,
        )


# ────────────────────────────────────────────────────────────────
# Error handling
# ────────────────────────────────────────────────────────────────

@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details or None),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response(
            ErrorCodes.VALIDATION_ERROR,
            "Request validation failed",
            {"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]},
        ),
    )


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@app.on_event("startup")
async def on_startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.get("/health")
async def health():
    return success_response({"ok": True})


@app.post("/bookings/preflight")
async def preflight(payload: PreflightRequest, store: BookingStore = Depends(get_booking_store)):
    result = await preflight_booking(store, payload.provider_id, payload.service_id, payload.start_time)
    return success_response(
        {
            "available": result.available,
            "start_time": result.start_at_utc.isoformat(),
            "end_time": result.end_at_utc.isoformat(),
            "conflicting_booking_ids": [str(i) for i in result.conflicting_ids],
        }
    )


@app.post("/bookings", status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    payload: BookingCreateRequest,
    store: BookingStore = Depends(get_booking_store),
    slot_lock_bucket: Optional[int] = Depends(get_slot_lock_bucket),
):
    candidate = BookingRecord(
        provider_id=payload.provider_id,
        service_id=payload.service_id,
        start_at_utc=payload.start_time,
        # Placeholder until the guard computes the real end
        end_at_utc=payload.start_time,
        status=payload.status,
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
        customer_sms_opt_in=payload.customer_sms_opt_in,
    )
    booking = await with_transient_retry(
        lambda: create_booking(store, candidate, slot_lock_bucket),
        attempts=settings.booking_write_attempts,
        backoff_seconds=settings.booking_retry_backoff_seconds,
    )
    return success_response(BookingResponse.from_record(booking).model_dump(mode="json"))


@app.post("/bookings/check-reminders")
async def check_reminders(
    now: datetime = Depends(get_now),
    store: BookingStore = Depends(get_booking_store),
    dispatcher: ReminderDispatcherBase = Depends(get_reminder_dispatcher),
):
    """Scan from the server clock. Replaying another instant is done with scripts/run_reminders.py."""
    result = await run_reminder_scan(
        store,
        dispatcher,
        now,
        timedelta(minutes=settings.reminder_lookahead_minutes),
    )
    return success_response(result.summary())


@app.post("/bookings/{booking_id}/reschedule")
async def reschedule_booking_endpoint(
    booking_id: uuid.UUID,
    payload: RescheduleRequest,
    store: BookingStore = Depends(get_booking_store),
    slot_lock_bucket: Optional[int] = Depends(get_slot_lock_bucket),
):
    booking = await with_transient_retry(
        lambda: reschedule_booking(store, booking_id, payload.start_time, slot_lock_bucket),
        attempts=settings.booking_write_attempts,
        backoff_seconds=settings.booking_retry_backoff_seconds,
    )
    return success_response(BookingResponse.from_record(booking).model_dump(mode="json"))


@app.post("/bookings/{booking_id}/status")
async def update_status_endpoint(
    booking_id: uuid.UUID,
    payload: StatusUpdateRequest,
    store: BookingStore = Depends(get_booking_store),
):
    booking = await with_transient_retry(
        lambda: update_booking_status(store, booking_id, payload.status),
        attempts=settings.booking_write_attempts,
        backoff_seconds=settings.booking_retry_backoff_seconds,
    )
    return success_response(BookingResponse.from_record(booking).model_dump(mode="json"))
