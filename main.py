import logging
import re
from dataclasses import asdict
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

import config
from calendar_mirror import build_mirror, mirror_booking, remove_mirrored_event
from conflicts import SESSION_LENGTH, ProposedBooking
from database import get_session, init_db
from errors import AuthError, BookingError, ConflictError, MirrorError, NotFoundError, ValidationError
from models import Booking
from schedule import SchedulingConfig, day_window, default_scheduling_config, enumerate_slots, validate_start
from store import BookingStore
from timewindow import as_utc, parse_start

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Session Booking Service")


# Pydantic Schemas for Request/Response
class BookingCreate(BaseModel):
    person_name: Optional[str] = None
    person_contact: Optional[str] = None
    # Older booking pages send one of these instead of person_contact
    person_phone: Optional[str] = None
    person_email: Optional[str] = None
    location: Optional[str] = None
    start_local: Optional[str] = None
    tz: Optional[str] = None


class BookingCreated(BaseModel):
    id: int
    calendar_url: Optional[str] = None


class BookingRead(BaseModel):
    id: int
    person_name: str
    person_contact: Optional[str]
    location: str
    start_utc: datetime
    end_utc: datetime
    external_event_id: Optional[str]
    created_at: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingRead":
        return cls(
            id=booking.id,
            person_name=booking.person_name,
            person_contact=booking.person_contact,
            location=booking.location,
            start_utc=as_utc(booking.start_utc),
            end_utc=as_utc(booking.end_utc),
            external_event_id=booking.external_event_id,
            created_at=as_utc(booking.created_at),
        )


class SlotRead(BaseModel):
    time: str
    start_utc: datetime
    end_utc: datetime
    available: bool
    reason: Optional[str] = None


class DaySlots(BaseModel):
    day: date
    location: Optional[str]
    timezone: str
    message: Optional[str] = None
    slots: List[SlotRead]


# Dependencies, overridable per deployment and in tests
@lru_cache()
def get_scheduling_config() -> SchedulingConfig:
    return default_scheduling_config()


@lru_cache()
def get_calendar_mirror():
    return build_mirror()


def get_now() -> datetime:
    return datetime.now(timezone.utc)


def get_admin_key() -> str:
    return config.ADMIN_KEY


def sanitize_contact(value: Optional[str]) -> Optional[str]:
    """Emails are trimmed; anything else is a phone reduced to digits and '+'."""
    value = (value or "").strip()
    if "@" in value:
        return value or None
    return re.sub(r"[^\d+]", "", value)[:20] or None


def check_admin_key(provided: Optional[str], expected: str) -> None:
    if provided is None or provided != expected:
        raise AuthError("Unauthorized")


def http_error(exc: BookingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@app.on_event("startup")
async def on_startup():
    await init_db()


# --- GET /api/bookings ---
@app.get("/api/bookings", response_model=List[BookingRead])
async def list_bookings(
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
):
    try:
        bookings = await BookingStore(session).list(from_, to)
    except BookingError as exc:
        raise http_error(exc)
    return [BookingRead.from_booking(b) for b in bookings]


# --- GET /api/slots ---
@app.get("/api/slots", response_model=DaySlots)
async def list_slots(
    day: date = Query(..., alias="date"),
    location: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    cfg: SchedulingConfig = Depends(get_scheduling_config),
    now: datetime = Depends(get_now),
):
    location = (location or "").strip() or None
    if not cfg.template.slots_for(day):
        return DaySlots(
            day=day, location=location, timezone=cfg.timezone, message="No sessions on this day.", slots=[]
        )

    try:
        bookings = await BookingStore(session).list(*day_window(day, cfg))
    except BookingError as exc:
        raise http_error(exc)

    slots = enumerate_slots(day, location, bookings, cfg, now)
    return DaySlots(
        day=day,
        location=location,
        timezone=cfg.timezone,
        slots=[SlotRead(**asdict(slot)) for slot in slots],
    )


# --- POST /api/bookings ---
@app.post("/api/bookings", response_model=BookingCreated, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    cfg: SchedulingConfig = Depends(get_scheduling_config),
    mirror=Depends(get_calendar_mirror),
    now: datetime = Depends(get_now),
):
    person_name = (booking_data.person_name or "").strip()
    location = (booking_data.location or "").strip()
    if not person_name or not location or not booking_data.start_local:
        raise HTTPException(status_code=400, detail="Missing required fields.")

    contact = sanitize_contact(
        booking_data.person_contact or booking_data.person_phone or booking_data.person_email
    )

    try:
        start = parse_start(booking_data.start_local, booking_data.tz or cfg.timezone)
        validate_start(start, cfg, now)
    except ValidationError as exc:
        raise http_error(exc)

    proposal = ProposedBooking(
        person_name=person_name,
        person_contact=contact,
        location=location,
        start_utc=start,
        end_utc=start + SESSION_LENGTH,
    )

    try:
        booking = await BookingStore(session).insert_if_no_conflict(proposal, cfg)
    except ConflictError as exc:
        logger.info("Booking rejected for %s at %s: %s", location, start.isoformat(), exc.message)
        raise http_error(exc)
    except BookingError as exc:
        raise http_error(exc)

    logger.info("Booking %s accepted: %s at %s", booking.id, location, start.isoformat())
    background_tasks.add_task(
        mirror_booking,
        mirror,
        booking.id,
        person_name,
        contact,
        location,
        proposal.start_utc,
        proposal.end_utc,
        cfg.timezone,
        config.MIRROR_MAX_ATTEMPTS,
        config.MIRROR_RETRY_DELAY,
    )
    return BookingCreated(id=booking.id, calendar_url=mirror.calendar_url)


# --- DELETE /api/bookings/{booking_id} (admin only) ---
@app.delete("/api/bookings/{booking_id}")
async def delete_booking(
    booking_id: int,
    x_admin_key: Optional[str] = Header(None),
    admin_key: str = Depends(get_admin_key),
    session: AsyncSession = Depends(get_session),
    mirror=Depends(get_calendar_mirror),
):
    if not admin_key:
        raise HTTPException(status_code=500, detail="Server missing ADMIN_KEY")

    store = BookingStore(session)
    try:
        check_admin_key(x_admin_key, admin_key)
        booking = await store.get(booking_id)
        if booking is None:
            raise NotFoundError("Not found")

        event_id = booking.external_event_id
        await store.delete(booking)
    except BookingError as exc:
        raise http_error(exc)

    # Calendar cleanup is best effort once the row is gone
    await remove_mirrored_event(mirror, event_id)

    logger.info("Booking %s deleted", booking_id)
    return {"ok": True}


# --- Diagnostics ---
@app.get("/api/_diag/env")
async def diag_env(cfg: SchedulingConfig = Depends(get_scheduling_config)):
    return {
        "calendarIdPreview": config.BOOKING_CALENDAR_ID[:12] + "...",
        "timeZone": cfg.timezone,
    }


@app.get("/api/_diag/calendar")
async def diag_calendar(mirror=Depends(get_calendar_mirror)):
    try:
        meta = await run_in_threadpool(mirror.describe)
    except MirrorError as exc:
        logger.error("Calendar diag failed: %s", exc.message)
        raise HTTPException(status_code=502, detail=exc.message)
    return {"ok": True, **meta}


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
