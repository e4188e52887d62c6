"""
Conflict engine.

Decides whether a proposed one-hour session can sit next to the bookings
already stored around it. The rules, checked per candidate in this order
(first match wins, since each produces its own message):

1. Hard overlap at any location.
2. Exact adjacency (zero gap) with a session at a different location.
3. A positive gap shorter than the travel buffer with a session at a
   different location.

Sessions at the same location may sit back to back. Candidates must cover
at least ``buffer`` on either side of the proposal; callers fetch them with
``timewindow.padded_window``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from timewindow import as_utc, format_range, gap_minutes, overlaps


DEFAULT_BUFFER_MINUTES = 60
SESSION_LENGTH = timedelta(hours=1)


@dataclass(frozen=True)
class ProposedBooking:
    person_name: str
    location: str
    start_utc: datetime
    end_utc: datetime
    person_contact: Optional[str] = None


@dataclass(frozen=True)
class ConflictResult:
    conflict: bool
    reason: Optional[str] = None
    booking: Any = None

    @property
    def accepted(self) -> bool:
        return not self.conflict


ACCEPT = ConflictResult(conflict=False)


def check_conflict(
    proposed: ProposedBooking,
    candidates: Iterable[Any],
    tz_name: str,
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES,
) -> ConflictResult:
    """
    Evaluate ``proposed`` against ``candidates``.

    Candidates are anything with ``start_utc``, ``end_utc`` and ``location``
    (stored Booking rows or plain test doubles). Returns ACCEPT or the first
    rejection found, in candidate order.
    """
    start = as_utc(proposed.start_utc)
    end = as_utc(proposed.end_utc)
    location = proposed.location
    buffer = timedelta(minutes=buffer_minutes)
    yours = format_range(start, end, tz_name)
    prefix = f"Need {buffer_minutes}-min buffer"

    for booking in candidates:
        their_start = as_utc(booking.start_utc)
        their_end = as_utc(booking.end_utc)
        theirs = format_range(their_start, their_end, tz_name)
        same_location = booking.location == location

        if overlaps(start, end, their_start, their_end):
            return ConflictResult(
                True, f"Overlaps existing session {theirs} at {booking.location}.", booking
            )

        if same_location:
            continue

        if their_end == start:
            return ConflictResult(
                True,
                f"{prefix}: previous session {theirs} at {booking.location} "
                f"ends exactly when your {yours} at {location} would start.",
                booking,
            )
        if their_start == end:
            return ConflictResult(
                True,
                f"{prefix}: next session {theirs} at {booking.location} "
                f"starts exactly when your {yours} at {location} would end.",
                booking,
            )

        if start >= their_end and start - their_end < buffer:
            mins = gap_minutes(their_end, start)
            return ConflictResult(
                True,
                f"{prefix}: previous session {theirs} at {booking.location}; "
                f"your {yours} at {location} starts only {mins} min after.",
                booking,
            )
        if their_start >= end and their_start - end < buffer:
            mins = gap_minutes(end, their_start)
            return ConflictResult(
                True,
                f"{prefix}: next session {theirs} at {booking.location} "
                f"begins only {mins} min after your {yours} at {location} ends.",
                booking,
            )

    return ACCEPT
