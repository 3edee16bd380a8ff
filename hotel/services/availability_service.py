"""
Room availability over half-open stay intervals.

A booking occupies [check_in_date, check_out_date): the check-out day is
free for the next guest, so back-to-back bookings never overlap.
"""
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hotel.database.models import Reservation, ExternalBooking, ReservationStatus
from hotel.errors import InvalidDateError

CANCELLED = ReservationStatus.cancelled.value
ONE_DAY = timedelta(days=1)


class Booking(NamedTuple):
    """Reservation or channel booking, as seen by the availability checks"""
    id: int
    room_id: Optional[int]
    check_in_date: date
    check_out_date: date
    status: str
    source: str = "reservation"  # "reservation" or the channel name


class BookingSpan(NamedTuple):
    start_index: int
    span_days: int
    is_visible: bool


HIDDEN_SPAN = BookingSpan(start_index=0, span_days=0, is_visible=False)


def parse_booking_date(value) -> date:
    """Accepts date, datetime or ISO string ('2026-03-01' or '2026-03-01T00:00:00Z')."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise InvalidDateError(f"Invalid booking date: {value!r}")


def _stay(booking: Booking):
    return parse_booking_date(booking.check_in_date), parse_booking_date(booking.check_out_date)


class AvailabilityEngine:
    """Free/busy checks over a list of bookings for one location."""

    def __init__(self, bookings: Iterable[Booking]):
        self.bookings: List[Booking] = [b for b in bookings if b.status != CANCELLED]

    def get_room_bookings(self, room_id: int) -> List[Booking]:
        # Unmapped channel bookings (room_id None) never block a room
        return [b for b in self.bookings if b.room_id is not None and b.room_id == room_id]

    def is_date_available(self, day, room_id: int) -> bool:
        day = parse_booking_date(day)
        for booking in self.get_room_bookings(room_id):
            check_in, check_out = _stay(booking)
            if check_in <= day < check_out:
                return False
        return True

    def is_range_available(self, check_in, check_out, room_id: int) -> bool:
        check_in = parse_booking_date(check_in)
        check_out = parse_booking_date(check_out)
        if check_out <= check_in:
            raise InvalidDateError(f"Check-out {check_out} must be after check-in {check_in}")

        for booking in self.get_room_bookings(room_id):
            existing_in, existing_out = _stay(booking)
            if check_in < existing_out and check_out > existing_in:
                return False
        return True

    def get_unavailable_dates(self, range_start, range_end, room_id: int) -> List[date]:
        """Every occupied day in [range_start, range_end] (both inclusive)."""
        current = parse_booking_date(range_start)
        end = parse_booking_date(range_end)

        unavailable = []
        while current <= end:
            if not self.is_date_available(current, room_id):
                unavailable.append(current)
            current += ONE_DAY
        return unavailable


def calculate_booking_span(booking: Booking, window: Sequence) -> BookingSpan:
    """
    Clip a stay to a calendar window.

    The window is an ordered list of days and covers
    [window[0], window[-1] + 1 day). Raises InvalidDateError for
    unparseable booking dates.
    """
    check_in, check_out = _stay(booking)
    if not window:
        return HIDDEN_SPAN

    days = [parse_booking_date(d) for d in window]
    window_start = days[0]
    window_end = days[-1] + ONE_DAY

    if check_out <= window_start or check_in >= window_end:
        return HIDDEN_SPAN

    display_start = max(check_in, window_start)
    display_end = min(check_out, window_end)

    try:
        start_index = days.index(display_start)
    except ValueError:
        return HIDDEN_SPAN

    span_days = max(1, (display_end - display_start).days)
    return BookingSpan(start_index=start_index, span_days=span_days, is_visible=True)


def build_calendar_rows(
    bookings: Iterable[Booking],
    window: Sequence
) -> Dict[Optional[int], List[tuple]]:
    """
    Visible (booking, span) pairs per room for a calendar window.
    Bookings with broken dates are logged and left out.
    """
    rows = defaultdict(list)
    for booking in bookings:
        if booking.status == CANCELLED:
            continue
        try:
            span = calculate_booking_span(booking, window)
        except InvalidDateError as e:
            logging.warning(f"Skipping booking {booking.id} on calendar: {e}")
            continue
        if span.is_visible:
            rows[booking.room_id].append((booking, span))

    for room_bookings in rows.values():
        room_bookings.sort(key=lambda item: item[1].start_index)
    return dict(rows)


# --- Datastore ---

async def fetch_active_bookings(
    session: AsyncSession,
    tenant_id: int,
    location_id: int,
    room_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    exclude_reservation_id: Optional[int] = None
) -> List[Booking]:
    """
    Non-cancelled reservations and channel bookings of a location.

    start/end narrow the result to stays touching that window.
    exclude_reservation_id drops the reservation being edited.
    """
    res_stmt = select(Reservation).where(
        Reservation.tenant_id == tenant_id,
        Reservation.location_id == location_id,
        Reservation.status != CANCELLED
    )
    ext_stmt = select(ExternalBooking).where(
        ExternalBooking.tenant_id == tenant_id,
        ExternalBooking.location_id == location_id,
        ExternalBooking.status != CANCELLED
    )

    if room_id is not None:
        res_stmt = res_stmt.where(Reservation.room_id == room_id)
        ext_stmt = ext_stmt.where(ExternalBooking.room_id == room_id)

    if start is not None and end is not None:
        res_stmt = res_stmt.where(
            Reservation.check_in_date <= end,
            Reservation.check_out_date >= start
        )
        ext_stmt = ext_stmt.where(
            ExternalBooking.check_in <= end,
            ExternalBooking.check_out >= start
        )

    if exclude_reservation_id is not None:
        res_stmt = res_stmt.where(Reservation.id != exclude_reservation_id)

    res_result = await session.execute(res_stmt.order_by(Reservation.check_in_date))
    ext_result = await session.execute(ext_stmt.order_by(ExternalBooking.check_in))

    bookings = [
        Booking(
            id=r.id,
            room_id=r.room_id,
            check_in_date=r.check_in_date,
            check_out_date=r.check_out_date,
            status=r.status
        )
        for r in res_result.scalars().all()
    ]
    bookings.extend(
        Booking(
            id=e.id,
            room_id=e.room_id,
            check_in_date=e.check_in,
            check_out_date=e.check_out,
            status=e.status,
            source=e.source
        )
        for e in ext_result.scalars().all()
    )
    return bookings


async def check_room_availability(
    session: AsyncSession,
    tenant_id: int,
    location_id: int,
    room_id: int,
    check_in,
    check_out,
    exclude_reservation_id: Optional[int] = None
) -> bool:
    check_in = parse_booking_date(check_in)
    check_out = parse_booking_date(check_out)

    bookings = await fetch_active_bookings(
        session,
        tenant_id,
        location_id,
        room_id=room_id,
        start=check_in,
        end=check_out,
        exclude_reservation_id=exclude_reservation_id
    )
    return AvailabilityEngine(bookings).is_range_available(check_in, check_out, room_id)
