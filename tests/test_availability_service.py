import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from hotel.database.models import Reservation, ExternalBooking, ReservationStatus
from hotel.errors import InvalidDateError
from hotel.services.availability_service import (
    AvailabilityEngine, Booking, calculate_booking_span, build_calendar_rows,
    parse_booking_date, fetch_active_bookings, check_room_availability
)


D1 = date(2026, 3, 10)
D2 = date(2026, 3, 13)


def booking(check_in, check_out, room_id=1, status="confirmed", booking_id=1):
    return Booking(
        id=booking_id,
        room_id=room_id,
        check_in_date=check_in,
        check_out_date=check_out,
        status=status
    )


def window(start, days):
    return [start + timedelta(days=i) for i in range(days)]


def test_single_booking_occupies_half_open_interval():
    engine = AvailabilityEngine([booking(D1, D2)])

    assert engine.is_date_available(D1 - timedelta(days=1), 1)
    assert not engine.is_date_available(D1, 1)
    assert not engine.is_date_available(D2 - timedelta(days=1), 1)
    assert engine.is_date_available(D2, 1)
    # Other rooms are untouched
    assert engine.is_date_available(D1, 2)


def test_back_to_back_allowed_overlap_rejected():
    engine = AvailabilityEngine([booking(D1, D2)])

    assert engine.is_range_available(D2, D2 + timedelta(days=2), 1)
    assert engine.is_range_available(D1 - timedelta(days=3), D1, 1)
    assert not engine.is_range_available(D2 - timedelta(days=1), D2 + timedelta(days=1), 1)
    assert not engine.is_range_available(D1 - timedelta(days=1), D2 + timedelta(days=1), 1)


def test_invalid_range_raises():
    engine = AvailabilityEngine([])
    with pytest.raises(InvalidDateError):
        engine.is_range_available(D2, D1, 1)
    with pytest.raises(InvalidDateError):
        engine.is_range_available(D1, D1, 1)


def test_cancelled_and_unmapped_bookings_never_block():
    engine = AvailabilityEngine([
        booking(D1, D2, status=ReservationStatus.cancelled.value),
        booking(D1, D2, room_id=None, booking_id=2),
    ])
    assert engine.is_range_available(D1, D2, 1)
    assert engine.get_room_bookings(1) == []


def test_unavailable_dates_inclusive_range():
    engine = AvailabilityEngine([booking(D1, D2), booking(date(2026, 3, 20), date(2026, 3, 21), booking_id=2)])

    result = engine.get_unavailable_dates(date(2026, 3, 1), date(2026, 3, 20), 1)
    assert result == [date(2026, 3, 10), date(2026, 3, 11), date(2026, 3, 12), date(2026, 3, 20)]


def test_parse_booking_date_accepts_strings():
    assert parse_booking_date("2026-03-10") == D1
    assert parse_booking_date("2026-03-10T00:00:00Z") == D1
    assert parse_booking_date(datetime(2026, 3, 10, 14, 0)) == D1
    with pytest.raises(InvalidDateError):
        parse_booking_date("10/03/2026")
    with pytest.raises(InvalidDateError):
        parse_booking_date(None)


def test_span_inside_window():
    span = calculate_booking_span(booking(D1, D2), window(date(2026, 3, 8), 14))
    assert span == (2, 3, True)


def test_span_clipped_to_window():
    days = window(date(2026, 3, 11), 7)

    # Starts before the window
    assert calculate_booking_span(booking(D1, D2), days) == (0, 2, True)
    # Ends after the window (window covers up to 2026-03-18 exclusive)
    late = booking(date(2026, 3, 16), date(2026, 3, 25))
    assert calculate_booking_span(late, days) == (5, 2, True)


def test_span_hidden_outside_window():
    days = window(date(2026, 3, 13), 7)
    # Checks out on the first day of the window
    assert calculate_booking_span(booking(D1, D2), days).is_visible is False
    assert calculate_booking_span(booking(D1, D2), []).is_visible is False


def test_span_with_broken_dates_raises():
    with pytest.raises(InvalidDateError):
        calculate_booking_span(booking("not-a-date", D2), window(D1, 7))


def test_calendar_rows_skip_broken_and_cancelled():
    bookings = [
        booking(date(2026, 3, 12), date(2026, 3, 14), booking_id=1),
        booking(D1, D2, room_id=2, booking_id=2),
        booking("garbage", D2, booking_id=3),
        booking(D1, D2, booking_id=4, status=ReservationStatus.cancelled.value),
    ]
    rows = build_calendar_rows(bookings, window(D1, 7))

    assert set(rows) == {1, 2}
    assert [(b.id, span.start_index) for b, span in rows[1]] == [(1, 2)]
    assert rows[2][0][1] == (0, 3, True)


# --- Datastore ---

def reservation_row(hotel, number, check_in, check_out, status="confirmed", room_id=None):
    return Reservation(
        tenant_id=hotel.tenant_id,
        location_id=hotel.location_id,
        room_id=room_id or hotel.room.id,
        reservation_number=number,
        guest_name="Guest",
        check_in_date=check_in,
        check_out_date=check_out,
        nights=(check_out - check_in).days,
        room_rate=Decimal("100"),
        currency="USD",
        status=status
    )


@pytest.mark.asyncio
async def test_fetch_merges_reservations_and_channel_bookings(async_session, hotel):
    kept = reservation_row(hotel, "RES-1", D1, D2)
    cancelled = reservation_row(hotel, "RES-2", D1, D2, status=ReservationStatus.cancelled.value)
    channel = ExternalBooking(
        tenant_id=hotel.tenant_id,
        location_id=hotel.location_id,
        room_id=hotel.room.id,
        source="booking_com",
        external_id="BK-77",
        check_in=date(2026, 3, 20),
        check_out=date(2026, 3, 22),
        total_amount=Decimal("250"),
        currency="USD"
    )
    async_session.add_all([kept, cancelled, channel])
    await async_session.commit()

    bookings = await fetch_active_bookings(async_session, hotel.tenant_id, hotel.location_id)
    assert [(b.source, b.check_in_date) for b in bookings] == [
        ("reservation", D1),
        ("booking_com", date(2026, 3, 20)),
    ]

    narrowed = await fetch_active_bookings(
        async_session, hotel.tenant_id, hotel.location_id,
        start=date(2026, 3, 19), end=date(2026, 3, 25)
    )
    assert [b.source for b in narrowed] == ["booking_com"]


@pytest.mark.asyncio
async def test_check_room_availability(async_session, hotel):
    existing = reservation_row(hotel, "RES-1", D1, D2)
    async_session.add(existing)
    async_session.add(ExternalBooking(
        tenant_id=hotel.tenant_id,
        location_id=hotel.location_id,
        room_id=hotel.room.id,
        source="airbnb",
        external_id="HM-1",
        check_in=date(2026, 3, 20),
        check_out=date(2026, 3, 22)
    ))
    await async_session.commit()

    room_id = hotel.room.id
    args = (async_session, hotel.tenant_id, hotel.location_id, room_id)

    assert await check_room_availability(*args, D2, date(2026, 3, 15))
    assert not await check_room_availability(*args, date(2026, 3, 12), date(2026, 3, 14))
    assert not await check_room_availability(*args, "2026-03-21", "2026-03-23")
    # Editing the reservation itself does not conflict with its own stay
    assert await check_room_availability(
        *args, date(2026, 3, 11), date(2026, 3, 14), exclude_reservation_id=existing.id
    )
    # Another room is free
    assert await check_room_availability(
        async_session, hotel.tenant_id, hotel.location_id, hotel.other_room.id, D1, D2
    )
