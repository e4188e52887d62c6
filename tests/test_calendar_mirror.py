from datetime import datetime, timedelta, timezone

import httplib2
import pytest
from google.oauth2.credentials import Credentials

from calendar_mirror import GoogleCalendarMirror, NullMirror, mirror_booking, remove_mirrored_event
from conflicts import ProposedBooking
from database import async_session
from errors import MirrorError
from store import BookingStore

from fakes import FakeMirror

START = datetime(2025, 1, 7, 23, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=1)


async def stored_booking(session):
    proposal = ProposedBooking(person_name="Alex", location="Bondi", start_utc=START, end_utc=END)
    return await BookingStore(session).insert(proposal)


async def run_mirror(mirror, booking_id, attempts=3):
    return await mirror_booking(
        mirror, booking_id, "Alex", "+61400000000", "Bondi", START, END, "Australia/Sydney",
        max_attempts=attempts, retry_delay=0,
    )


async def reload(booking_id):
    async with async_session() as session:
        return await BookingStore(session).get(booking_id)


@pytest.mark.asyncio
async def test_mirror_links_event_to_booking(session):
    booking = await stored_booking(session)
    mirror = FakeMirror()

    event = await run_mirror(mirror, booking.id)

    assert event.id == "evt-1"
    assert mirror.created[0]["summary"] == "Private with Alex"
    assert "+61400000000" in mirror.created[0]["description"]
    assert (await reload(booking.id)).external_event_id == "evt-1"


@pytest.mark.asyncio
async def test_mirror_retries_then_succeeds(session):
    booking = await stored_booking(session)
    mirror = FakeMirror(failures=2)

    event = await run_mirror(mirror, booking.id, attempts=3)

    assert event is not None
    assert mirror.attempts == 3
    assert (await reload(booking.id)).external_event_id == event.id


@pytest.mark.asyncio
async def test_mirror_gives_up_without_touching_booking(session):
    booking = await stored_booking(session)
    mirror = FakeMirror(failures=10)

    assert await run_mirror(mirror, booking.id, attempts=3) is None

    assert mirror.attempts == 3
    kept = await reload(booking.id)
    assert kept is not None
    assert kept.external_event_id is None


@pytest.mark.asyncio
async def test_event_for_deleted_booking_is_cleaned_up(db):
    mirror = FakeMirror()
    event = await run_mirror(mirror, 9999)
    assert mirror.deleted == [event.id]


@pytest.mark.asyncio
async def test_null_mirror_does_nothing(db):
    assert await run_mirror(NullMirror(), 1) is None
    assert await remove_mirrored_event(NullMirror(), "evt-1") is False


@pytest.mark.asyncio
async def test_remove_mirrored_event_swallows_calendar_failures():
    assert await remove_mirrored_event(FakeMirror(delete_fails=True), "evt-1") is False
    mirror = FakeMirror()
    assert await remove_mirrored_event(mirror, "evt-1") is True
    assert mirror.deleted == ["evt-1"]
    assert await remove_mirrored_event(mirror, None) is False


class StubRequest:
    def __init__(self, api):
        self.api = api

    def execute(self, http=None):
        self.api.transports.append(http)
        if self.api.error is not None:
            raise self.api.error
        return {"id": "evt-9", "htmlLink": "https://calendar.example/evt-9"}


class StubCalendarApi:
    """Enough of the discovery resource for events().insert/delete."""

    def __init__(self, error=None):
        self.error = error
        self.transports = []

    def events(self):
        return self

    def insert(self, **kwargs):
        return StubRequest(self)

    def delete(self, **kwargs):
        return StubRequest(self)


def google_mirror(api):
    mirror = GoogleCalendarMirror("cal@example.com")
    mirror._credentials = Credentials(token="test-token")
    mirror._service = api
    return mirror


@pytest.mark.asyncio
async def test_calendar_timeouts_are_retried_then_dropped(session):
    booking = await stored_booking(session)
    api = StubCalendarApi(error=TimeoutError("timed out"))

    assert await run_mirror(google_mirror(api), booking.id, attempts=3) is None

    assert len(api.transports) == 3
    assert (await reload(booking.id)).external_event_id is None


@pytest.mark.asyncio
async def test_calendar_timeout_on_delete_is_reported_not_raised():
    api = StubCalendarApi(error=TimeoutError("timed out"))
    assert await remove_mirrored_event(google_mirror(api), "evt-1") is False


def test_calendar_transport_errors_become_mirror_errors():
    mirror = google_mirror(StubCalendarApi(error=httplib2.ServerNotFoundError("no route")))
    with pytest.raises(MirrorError, match="Calendar delete failed"):
        mirror.delete_event("evt-1")


def test_each_calendar_call_gets_its_own_transport():
    api = StubCalendarApi()
    mirror = google_mirror(api)

    event = mirror.create_event("Private with Alex", "", "Bondi", START, END, "Australia/Sydney")
    mirror.delete_event(event.id)

    assert event.id == "evt-9"
    first, second = api.transports
    assert first is not second
    assert first.http is not second.http
