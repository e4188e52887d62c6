"""
Weekly availability, lead time and slot enumeration.

Weekdays use 0=Sunday .. 6=Saturday throughout, matching how the booking
page numbers them. Nothing here reads process-wide state: every function
takes a SchedulingConfig, so tests and deployments can pass their own.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import config
from conflicts import DEFAULT_BUFFER_MINUTES, SESSION_LENGTH, ProposedBooking, check_conflict
from errors import ValidationError
from timewindow import as_utc, get_timezone, local_datetime, overlaps, padded_window

WEEKDAY_HOURS = ("10:00", "11:00", "14:00", "15:00", "16:00")

DEFAULT_WEEKLY_SCHEDULE: Dict[int, Tuple[str, ...]] = {
    0: (),                  # Sun (no sessions)
    1: WEEKDAY_HOURS,       # Mon
    2: WEEKDAY_HOURS,       # Tue
    3: WEEKDAY_HOURS,       # Wed
    4: WEEKDAY_HOURS,       # Thu
    5: WEEKDAY_HOURS,       # Fri
    6: ("09:00", "10:00"),  # Sat
}


def sunday_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


@dataclass(frozen=True)
class ScheduleTemplate:
    weekly: Dict[int, Tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_WEEKLY_SCHEDULE))

    def slots_for(self, day: date) -> Tuple[str, ...]:
        return tuple(self.weekly.get(sunday_weekday(day), ()))


@dataclass(frozen=True)
class LeadTimePolicy:
    """
    Minimum notice between "now" and a session start.

    Saturday and Monday sessions sit either side of the weekend, when no
    one is around to confirm, so they get the longer window.
    """

    default_notice: timedelta = timedelta(hours=2)
    extended_notice: timedelta = timedelta(hours=24)
    extended_weekdays: frozenset = frozenset({1, 6})

    def required_notice(self, local_day: date) -> timedelta:
        if sunday_weekday(local_day) in self.extended_weekdays:
            return self.extended_notice
        return self.default_notice

    def allows(self, start_utc: datetime, now: datetime, tz_name: str) -> bool:
        local_day = as_utc(start_utc).astimezone(get_timezone(tz_name)).date()
        return as_utc(start_utc) - as_utc(now) >= self.required_notice(local_day)


@dataclass(frozen=True)
class SchedulingConfig:
    template: ScheduleTemplate = field(default_factory=ScheduleTemplate)
    lead_time: LeadTimePolicy = field(default_factory=LeadTimePolicy)
    timezone: str = "Australia/Sydney"
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES
    candidate_padding: timedelta = timedelta(hours=2)


def default_scheduling_config() -> SchedulingConfig:
    return SchedulingConfig(timezone=config.TIMEZONE)


@dataclass(frozen=True)
class Slot:
    time: str
    start_utc: datetime
    end_utc: datetime
    available: bool
    reason: Optional[str] = None


def _hours(delta: timedelta) -> str:
    hours = delta.total_seconds() / 3600
    return f"{hours:g}"


def day_window(day: date, cfg: SchedulingConfig) -> Tuple[datetime, datetime]:
    """UTC window covering the local day, padded for neighbour lookups."""
    start = local_datetime(day, "00:00", cfg.timezone)
    end = local_datetime(day + timedelta(days=1), "00:00", cfg.timezone)
    return padded_window(start, end, cfg.candidate_padding)


def candidate_window(start_utc: datetime, end_utc: datetime, cfg: SchedulingConfig) -> Tuple[datetime, datetime]:
    return padded_window(start_utc, end_utc, cfg.candidate_padding)


def enumerate_slots(
    day: date,
    location: Optional[str],
    bookings: Sequence[Any],
    cfg: SchedulingConfig,
    now: datetime,
) -> List[Slot]:
    """
    List the nominal sessions for ``day`` and whether each can be booked.

    ``bookings`` must cover ``day_window(day, cfg)``. An empty result means
    no sessions run that day.
    """
    slots = []
    for hhmm in cfg.template.slots_for(day):
        start = local_datetime(day, hhmm, cfg.timezone)
        end = start + SESSION_LENGTH

        if not location:
            slots.append(Slot(hhmm, start, end, False, "Choose a location first."))
            continue

        reason = slot_unavailable_reason(start, end, location, bookings, cfg, now)
        slots.append(Slot(hhmm, start, end, reason is None, reason))
    return slots


def slot_unavailable_reason(
    start: datetime,
    end: datetime,
    location: str,
    bookings: Iterable[Any],
    cfg: SchedulingConfig,
    now: datetime,
) -> Optional[str]:
    bookings = list(bookings)

    if not cfg.lead_time.allows(start, now, cfg.timezone):
        local_day = start.astimezone(get_timezone(cfg.timezone)).date()
        notice = cfg.lead_time.required_notice(local_day)
        return f"Needs at least {_hours(notice)} hours notice."

    if any(overlaps(start, end, b.start_utc, b.end_utc) for b in bookings):
        return "Already booked."

    proposal = ProposedBooking(person_name="", location=location, start_utc=start, end_utc=end)
    result = check_conflict(proposal, bookings, cfg.timezone, cfg.buffer_minutes)
    if result.conflict:
        return result.reason

    if start <= as_utc(now):
        return "This time has passed."
    return None


def validate_start(start_utc: datetime, cfg: SchedulingConfig, now: datetime) -> None:
    """
    Server-side gate for a requested start: not in the past, on the weekly
    template, and with enough notice. Raises ValidationError otherwise.
    """
    start_utc = as_utc(start_utc)
    if start_utc < as_utc(now):
        raise ValidationError("You can't book in the past.")

    local = start_utc.astimezone(get_timezone(cfg.timezone))
    if f"{local:%H:%M}" not in cfg.template.slots_for(local.date()):
        raise ValidationError(f"No session starts at {local:%H:%M} on {local:%A}.")

    if not cfg.lead_time.allows(start_utc, now, cfg.timezone):
        notice = cfg.lead_time.required_notice(local.date())
        raise ValidationError(f"Sessions on {local:%A} need at least {_hours(notice)} hours notice.")
