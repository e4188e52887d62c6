"""
Google Calendar mirror.

Every accepted booking gets one calendar event. The mirror runs as a
background task after the booking is stored; it retries a few times and
then gives up with an error in the log. The booking itself is never
touched by a mirror failure.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import google.auth
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.errors import HttpError
from starlette.concurrency import run_in_threadpool

import config
from database import async_session
from errors import MirrorError, StoreError
from store import BookingStore
from timewindow import as_utc

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

# Network timeouts and resets surface as OSError or HttpLib2Error, not HttpError
CALENDAR_ERRORS = (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError)


@dataclass(frozen=True)
class MirroredEvent:
    id: str
    html_link: Optional[str] = None


class NullMirror:
    """Used when no calendar is configured; bookings are simply not mirrored."""

    enabled = False
    calendar_id = ""
    calendar_url = None

    def create_event(self, *args, **kwargs) -> Optional[MirroredEvent]:
        return None

    def delete_event(self, event_id: str) -> None:
        return None

    def describe(self) -> Dict[str, Any]:
        raise MirrorError("Calendar mirroring is not configured.")


class GoogleCalendarMirror:
    enabled = True

    def __init__(self, calendar_id: str, service_account_file: Optional[str] = None):
        self.calendar_id = calendar_id
        self.service_account_file = service_account_file
        self._credentials = None
        self._service = None

    @property
    def calendar_url(self) -> str:
        return f"https://calendar.google.com/calendar/embed?src={quote(self.calendar_id)}"

    def credentials(self):
        if self._credentials is None:
            try:
                if self.service_account_file:
                    self._credentials = service_account.Credentials.from_service_account_file(
                        self.service_account_file, scopes=SCOPES
                    )
                else:
                    # Application default credentials (GOOGLE_APPLICATION_CREDENTIALS or the runtime's account)
                    self._credentials, _ = google.auth.default(scopes=SCOPES)
            except (GoogleAuthError, OSError, ValueError) as exc:
                raise MirrorError(f"Could not load calendar credentials: {exc}") from exc
        return self._credentials

    def service(self):
        if self._service is None:
            self._service = build("calendar", "v3", credentials=self.credentials(), cache_discovery=False)
        return self._service

    def _execute(self, request, action: str) -> Dict[str, Any]:
        # httplib2 is not thread-safe; each call gets its own transport
        http = AuthorizedHttp(self.credentials(), http=httplib2.Http())
        try:
            return request.execute(http=http)
        except CALENDAR_ERRORS as exc:
            raise MirrorError(f"Calendar {action} failed: {exc}") from exc

    def create_event(
        self,
        summary: str,
        description: str,
        location: str,
        start: datetime,
        end: datetime,
        timezone: str,
    ) -> MirroredEvent:
        body = {
            "summary": summary,
            "description": description,
            "location": location,
            "start": {"dateTime": as_utc(start).isoformat(), "timeZone": timezone},
            "end": {"dateTime": as_utc(end).isoformat(), "timeZone": timezone},
        }
        request = self.service().events().insert(calendarId=self.calendar_id, body=body)
        created = self._execute(request, "insert")
        return MirroredEvent(id=created.get("id"), html_link=created.get("htmlLink"))

    def delete_event(self, event_id: str) -> None:
        self._execute(self.service().events().delete(calendarId=self.calendar_id, eventId=event_id), "delete")

    def describe(self) -> Dict[str, Any]:
        meta = self._execute(self.service().calendars().get(calendarId=self.calendar_id), "lookup")
        return {"id": meta.get("id"), "summary": meta.get("summary"), "timeZone": meta.get("timeZone")}

    def upcoming_events(self, max_results: int = 3) -> List[Dict[str, Any]]:
        now = datetime.now(dt_timezone.utc).isoformat()
        request = self.service().events().list(
            calendarId=self.calendar_id,
            timeMin=now,
            maxResults=max_results,
            singleEvents=True,
            orderBy="startTime",
        )
        return self._execute(request, "listing").get("items", [])


def build_mirror():
    if not config.BOOKING_CALENDAR_ID:
        logger.warning("BOOKING_CALENDAR_ID is not set; bookings will not be mirrored")
        return NullMirror()
    return GoogleCalendarMirror(config.BOOKING_CALENDAR_ID, config.GOOGLE_SERVICE_ACCOUNT_FILE)


async def mirror_booking(
    mirror,
    booking_id: int,
    person_name: str,
    person_contact: Optional[str],
    location: str,
    start: datetime,
    end: datetime,
    timezone: str,
    max_attempts: int = config.MIRROR_MAX_ATTEMPTS,
    retry_delay: float = config.MIRROR_RETRY_DELAY,
    session_factory=async_session,
) -> Optional[MirroredEvent]:
    """
    Create the calendar event for a stored booking and link it back.

    Retries MirrorError up to ``max_attempts`` times with a linearly growing
    delay, then logs and drops. Returns the event, or None if nothing was
    mirrored.
    """
    if not mirror.enabled:
        return None

    event = None
    for attempt in range(1, max_attempts + 1):
        try:
            event = await run_in_threadpool(
                mirror.create_event,
                f"Private with {person_name}",
                f"Booked via site.\nContact: {person_contact or 'n/a'}",
                location,
                start,
                end,
                timezone,
            )
            break
        except MirrorError as exc:
            if attempt == max_attempts:
                logger.error("Giving up mirroring booking %s after %d attempts: %s", booking_id, attempt, exc)
                return None
            logger.warning("Mirroring booking %s failed (attempt %d): %s", booking_id, attempt, exc)
            await asyncio.sleep(retry_delay * attempt)

    if event is None or not event.id:
        return None
    logger.info("Calendar event created for booking %s: %s", booking_id, event.html_link)

    async with session_factory() as session:
        try:
            linked = await BookingStore(session).set_external_event_id(booking_id, event.id)
        except StoreError:
            logger.error("Booking %s mirrored as %s but the link was not saved", booking_id, event.id)
            return event

    if linked is None:
        # Booking was removed while the event was being created
        await remove_mirrored_event(mirror, event.id)
    return event


async def remove_mirrored_event(mirror, event_id: Optional[str]) -> bool:
    """Best-effort delete; failures are logged and reported as False."""
    if not event_id or not mirror.enabled:
        return False
    try:
        await run_in_threadpool(mirror.delete_event, event_id)
    except MirrorError as exc:
        logger.warning("Calendar delete failed for event %s: %s", event_id, exc)
        return False
    return True
