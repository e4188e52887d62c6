import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conflicts import ProposedBooking
from database import async_session
from errors import ConflictError, ValidationError
from schedule import SchedulingConfig
from store import BookingStore
from timewindow import as_utc

CFG = SchedulingConfig(timezone="Australia/Sydney")


def proposal(location, hour, minute=0, name="Alex"):
    start = datetime(2025, 1, 8, hour, minute, tzinfo=timezone.utc)
    return ProposedBooking(person_name=name, location=location, start_utc=start, end_utc=start + timedelta(hours=1))


@pytest.mark.asyncio
async def test_insert_assigns_id_and_created_at(session):
    booking = await BookingStore(session).insert(proposal("Bondi", 2))
    assert booking.id is not None
    assert booking.created_at is not None
    assert booking.end_utc - booking.start_utc == timedelta(hours=1)
    assert booking.external_event_id is None


@pytest.mark.asyncio
async def test_list_returns_window_in_start_order(session):
    store = BookingStore(session)
    await store.insert(proposal("Bondi", 6))
    await store.insert(proposal("Bondi", 2))
    await store.insert(proposal("Manly", 4))

    everything = await store.list()
    assert [b.start_utc.hour for b in everything] == [2, 4, 6]

    window = await store.list(
        datetime(2025, 1, 8, 3, 0, tzinfo=timezone.utc),
        datetime(2025, 1, 8, 5, 0, tzinfo=timezone.utc),
    )
    assert [b.location for b in window] == ["Manly"]


@pytest.mark.asyncio
async def test_insert_if_no_conflict_accepts_back_to_back_same_location(session):
    store = BookingStore(session)
    await store.insert_if_no_conflict(proposal("Bondi", 2), CFG)
    second = await store.insert_if_no_conflict(proposal("Bondi", 3), CFG)
    assert second.id is not None
    assert len(await store.list()) == 2


@pytest.mark.asyncio
async def test_insert_if_no_conflict_rejects_without_travel_buffer(session):
    store = BookingStore(session)
    first = await store.insert_if_no_conflict(proposal("Bondi", 2), CFG)

    with pytest.raises(ConflictError) as excinfo:
        await store.insert_if_no_conflict(proposal("Manly", 3, 30), CFG)

    assert "starts only 30 min after" in excinfo.value.message
    assert excinfo.value.booking.id == first.id
    assert len(await store.list()) == 1


@pytest.mark.asyncio
async def test_duplicate_start_at_same_location_is_a_conflict(session):
    store = BookingStore(session)
    await store.insert(proposal("Bondi", 2))
    with pytest.raises(ConflictError):
        await store.insert(proposal("Bondi", 2, name="Someone else"))
    assert len(await store.list()) == 1


@pytest.mark.asyncio
async def test_concurrent_requests_cannot_both_win(db):
    async def attempt(location):
        async with async_session() as session:
            try:
                return await BookingStore(session).insert_if_no_conflict(proposal(location, 2), CFG)
            except ConflictError:
                return None

    results = await asyncio.gather(attempt("Bondi"), attempt("Manly"))
    assert len([r for r in results if r is not None]) == 1


@pytest.mark.asyncio
async def test_set_external_event_id(session):
    store = BookingStore(session)
    booking = await store.insert(proposal("Bondi", 2))
    updated = await store.set_external_event_id(booking.id, "evt-42")
    assert updated.external_event_id == "evt-42"
    assert await store.set_external_event_id(booking.id + 100, "evt-43") is None


@pytest.mark.asyncio
async def test_delete(session):
    store = BookingStore(session)
    booking = await store.insert(proposal("Bondi", 2))
    await store.delete(booking)
    assert await store.get(booking.id) is None


@pytest.mark.asyncio
async def test_booking_round_trips_as_the_same_utc_instant(session):
    # 10:00 in Sydney, given with its local offset
    sydney_start = datetime(2025, 1, 8, 10, 0, tzinfo=timezone(timedelta(hours=11)))
    proposed = ProposedBooking(
        person_name="Alex", location="Bondi", start_utc=sydney_start, end_utc=sydney_start + timedelta(hours=1)
    )
    booking = await BookingStore(session).insert(proposed)

    async with async_session() as fresh:
        loaded = await BookingStore(fresh).get(booking.id)

    assert as_utc(loaded.start_utc) == datetime(2025, 1, 7, 23, 0, tzinfo=timezone.utc)
    assert as_utc(loaded.end_utc) == datetime(2025, 1, 8, 0, 0, tzinfo=timezone.utc)
    assert as_utc(loaded.created_at).tzinfo == timezone.utc


@pytest.mark.asyncio
async def test_insert_rejects_sessions_that_are_not_one_hour(session):
    start = datetime(2025, 1, 8, 2, 0, tzinfo=timezone.utc)
    store = BookingStore(session)
    with pytest.raises(ValidationError, match="one hour"):
        await store.insert(
            ProposedBooking(person_name="Alex", location="Bondi", start_utc=start, end_utc=start + timedelta(hours=2))
        )
    assert await store.list() == []
