"""
Booking store gateway.

The conflict check and the insert run inside one transaction while holding
a process-wide lock, so two requests in this process can never both pass
the check for neighbouring sessions. The (location, start_utc) unique
constraint catches exact duplicates coming from other processes; anything
finer across processes needs a serializable database.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from conflicts import SESSION_LENGTH, ProposedBooking, check_conflict
from errors import ConflictError, StoreError, ValidationError
from models import Booking
from schedule import SchedulingConfig, candidate_window
from timewindow import as_utc

logger = logging.getLogger(__name__)

_insert_lock = asyncio.Lock()


class BookingStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list(
        self,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> List[Booking]:
        """Bookings intersecting [window_start, window_end), earliest first."""
        statement = select(Booking)
        if window_start is not None:
            statement = statement.where(Booking.end_utc > as_utc(window_start))
        if window_end is not None:
            statement = statement.where(Booking.start_utc < as_utc(window_end))
        statement = statement.order_by(Booking.start_utc)

        try:
            result = await self.session.execute(statement)
        except SQLAlchemyError as exc:
            logger.error("Listing bookings failed: %s", exc)
            raise StoreError("Server error.") from exc
        return list(result.scalars().all())

    async def get(self, booking_id: int) -> Optional[Booking]:
        try:
            return await self.session.get(Booking, booking_id)
        except SQLAlchemyError as exc:
            logger.error("Loading booking %s failed: %s", booking_id, exc)
            raise StoreError("Server error.") from exc

    async def insert(self, proposed: ProposedBooking) -> Booking:
        if as_utc(proposed.end_utc) - as_utc(proposed.start_utc) != SESSION_LENGTH:
            raise ValidationError("Sessions are exactly one hour long.")
        booking = Booking(
            person_name=proposed.person_name,
            person_contact=proposed.person_contact,
            location=proposed.location,
            start_utc=as_utc(proposed.start_utc),
            end_utc=as_utc(proposed.end_utc),
        )
        try:
            self.session.add(booking)
            await self.session.commit()
            await self.session.refresh(booking)
        except IntegrityError:
            # Another process stored the same location and start first
            await self.session.rollback()
            raise ConflictError("That session was just booked. Please pick another time.")
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Inserting booking failed: %s", exc)
            raise StoreError("Server error.") from exc
        return booking

    async def insert_if_no_conflict(self, proposed: ProposedBooking, cfg: SchedulingConfig) -> Booking:
        """Check ``proposed`` against its neighbours and store it, atomically."""
        async with _insert_lock:
            candidates = await self.list(*candidate_window(proposed.start_utc, proposed.end_utc, cfg))
            result = check_conflict(proposed, candidates, cfg.timezone, cfg.buffer_minutes)
            if result.conflict:
                raise ConflictError(result.reason, result.booking)
            return await self.insert(proposed)

    async def delete(self, booking: Booking) -> None:
        booking_id = booking.id
        try:
            await self.session.delete(booking)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Deleting booking %s failed: %s", booking_id, exc)
            raise StoreError("Server error.") from exc

    async def set_external_event_id(self, booking_id: int, event_id: str) -> Optional[Booking]:
        booking = await self.get(booking_id)
        if booking is None:
            # Deleted before the mirror finished
            return None
        booking.external_event_id = event_id
        try:
            self.session.add(booking)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Linking calendar event to booking %s failed: %s", booking_id, exc)
            raise StoreError("Server error.") from exc
        return booking
