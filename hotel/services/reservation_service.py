import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hotel.config import config
from hotel.database.models import (
    Reservation, Room, Income, Account,
    ReservationStatus, BookingSource, IncomeType, PENDING_PAYMENT_METHOD
)
from hotel.errors import (
    InvalidDateError, RoomUnavailable, InvalidAmount, MissingAccount,
    CurrencyMismatchUnresolvable, RateNotFound
)
from hotel.schemas.validation import AmountModel, CurrencyCodeModel, StayDatesModel, first_error
from hotel.services.availability_service import check_room_availability
from hotel.services.currency_service import get_converter
from hotel.services.ledger_service import get_reservation
from hotel.services.payment_service import log_conversion
from hotel.utils.currencies import round_money, to_decimal


def _stay_dates(check_in, check_out) -> StayDatesModel:
    try:
        return StayDatesModel(check_in=check_in, check_out=check_out)
    except ValidationError as e:
        raise InvalidDateError(first_error(e)) from e


def _amount(value) -> Decimal:
    try:
        return AmountModel(amount=value).amount
    except ValidationError as e:
        raise InvalidAmount(f"Amount must be greater than 0 ({first_error(e)})") from e


def _currency(code: str) -> str:
    try:
        return CurrencyCodeModel(code=code).code
    except ValidationError as e:
        raise CurrencyMismatchUnresolvable(f"Invalid currency: {first_error(e)}") from e


async def generate_reservation_number(session: AsyncSession, tenant_id: int) -> str:
    """RES-YYYYMMDD-NNNN, sequence per tenant"""
    count_stmt = select(func.count(Reservation.id)).where(Reservation.tenant_id == tenant_id)
    sequence = (await session.execute(count_stmt)).scalar() + 1
    prefix = f"RES-{date.today():%Y%m%d}"

    # Check uniqueness
    while True:
        number = f"{prefix}-{sequence:04d}"
        stmt = select(Reservation.id).where(Reservation.reservation_number == number)
        if not (await session.execute(stmt)).scalar_one_or_none():
            return number
        sequence += 1


async def create_reservation(
    session: AsyncSession,
    tenant_id: int,
    location_id: int,
    room_id: int,
    guest_name: str,
    check_in,
    check_out,
    room_rate=None,
    currency: Optional[str] = None,
    booking_source: str = BookingSource.direct.value,
    status: str = ReservationStatus.confirmed.value,
    created_by: Optional[int] = None,
    guest_email: Optional[str] = None,
    guest_phone: Optional[str] = None,
    adults: int = 1,
    children: int = 0,
    special_requests: Optional[str] = None
) -> Reservation:
    """
    Create a reservation for one room.

    Room charge is nights x room_rate, fixed at booking time. Rate and
    currency default to the room's base rate.
    Raises RoomUnavailable if the stay overlaps another booking of the room.
    """
    stay = _stay_dates(check_in, check_out)

    # LOCK THE ROOM ROW so two operators cannot book it at the same time
    lock_stmt = (
        select(Room)
        .where(
            Room.id == room_id,
            Room.tenant_id == tenant_id,
            Room.location_id == location_id
        )
        .with_for_update()
    )
    room = (await session.execute(lock_stmt)).scalar_one_or_none()
    if not room:
        raise ValueError(f"Room ID {room_id} not found in location {location_id}")

    rate = to_decimal(room_rate if room_rate is not None else room.base_rate)
    if rate < 0:
        raise InvalidAmount("Room rate cannot be negative")
    currency = _currency(currency or room.currency)
    BookingSource(booking_source)
    ReservationStatus(status)

    available = await check_room_availability(
        session, tenant_id, location_id, room_id, stay.check_in, stay.check_out
    )
    if not available:
        raise RoomUnavailable(room_id, stay.check_in, stay.check_out)

    room_charge = round_money(rate * stay.nights)
    reservation = Reservation(
        tenant_id=tenant_id,
        location_id=location_id,
        room_id=room_id,
        reservation_number=await generate_reservation_number(session, tenant_id),
        guest_name=guest_name,
        guest_email=guest_email,
        guest_phone=guest_phone,
        adults=adults,
        children=children,
        check_in_date=stay.check_in,
        check_out_date=stay.check_out,
        nights=stay.nights,
        room_rate=rate,
        currency=currency,
        total_amount=room_charge,
        paid_amount=Decimal(0),
        balance_amount=room_charge,  # Full amount unpaid initially
        status=status,
        booking_source=booking_source,
        special_requests=special_requests,
        created_by=created_by
    )
    session.add(reservation)
    await session.commit()

    logging.info(
        f"Reservation {reservation.reservation_number} created: room {room_id}, "
        f"{stay.check_in}..{stay.check_out}, {currency} {room_charge}"
    )
    return reservation


async def update_reservation_dates(
    session: AsyncSession,
    tenant_id: int,
    reservation_id: int,
    check_in,
    check_out,
    room_id: Optional[int] = None,
    room_rate=None
) -> Reservation:
    """
    Move a stay (and optionally change room or nightly rate).
    The reservation itself is ignored in the availability check.
    """
    reservation = await get_reservation(session, tenant_id, reservation_id)
    if reservation.status == ReservationStatus.cancelled.value:
        raise ValueError(f"Reservation ID {reservation_id} is cancelled")

    stay = _stay_dates(check_in, check_out)
    target_room = room_id if room_id is not None else reservation.room_id

    if target_room is not None:
        available = await check_room_availability(
            session,
            tenant_id,
            reservation.location_id,
            target_room,
            stay.check_in,
            stay.check_out,
            exclude_reservation_id=reservation.id
        )
        if not available:
            raise RoomUnavailable(target_room, stay.check_in, stay.check_out)

    rate = to_decimal(room_rate) if room_rate is not None else to_decimal(reservation.room_rate)
    if rate < 0:
        raise InvalidAmount("Room rate cannot be negative")

    old_room_charge = round_money(to_decimal(reservation.room_rate) * reservation.nights)
    new_room_charge = round_money(rate * stay.nights)
    delta = new_room_charge - old_room_charge

    reservation.room_id = target_room
    reservation.check_in_date = stay.check_in
    reservation.check_out_date = stay.check_out
    reservation.nights = stay.nights
    reservation.room_rate = rate
    reservation.total_amount = to_decimal(reservation.total_amount or 0) + delta
    reservation.balance_amount = reservation.total_amount - to_decimal(reservation.paid_amount or 0)

    await session.commit()
    logging.info(f"Reservation {reservation.reservation_number} moved to {stay.check_in}..{stay.check_out}")
    return reservation


async def update_reservation_status(
    session: AsyncSession,
    tenant_id: int,
    reservation_id: int,
    status: str
) -> Reservation:
    status = ReservationStatus(status).value
    reservation = await get_reservation(session, tenant_id, reservation_id)

    # IDEMPOTENCY CHECK
    if reservation.status == status:
        return reservation

    reservation.status = status
    await session.commit()
    logging.info(f"Reservation {reservation.reservation_number} status -> {status}")
    return reservation


async def add_service_charge(
    session: AsyncSession,
    tenant_id: int,
    reservation_id: int,
    amount,
    currency: Optional[str] = None,
    note: Optional[str] = None,
    created_by: Optional[int] = None
) -> Income:
    """
    Add an unpaid item to the guest bill.
    The datastore trigger raises the reservation total and balance.
    """
    reservation = await get_reservation(session, tenant_id, reservation_id)
    if reservation.status == ReservationStatus.cancelled.value:
        raise ValueError(f"Reservation ID {reservation_id} is cancelled")

    income = Income(
        tenant_id=tenant_id,
        location_id=reservation.location_id,
        booking_id=reservation.id,
        account_id=None,  # No account for pending items
        amount=_amount(amount),
        currency=_currency(currency or reservation.currency),
        payment_method=PENDING_PAYMENT_METHOD,
        type=IncomeType.service.value,
        note=note or f"Additional service for reservation {reservation.reservation_number}",
        income_date=date.today(),
        created_by=created_by
    )
    session.add(income)
    await session.commit()
    return income


async def record_service_income(
    session: AsyncSession,
    tenant_id: int,
    reservation_id: int,
    amount,
    currency: str,
    account_id: int,
    payment_method: str = "cash",
    note: Optional[str] = None,
    created_by: Optional[int] = None
) -> Income:
    """
    Record a service the guest paid on the spot.

    The amount lands in the account's currency; a conversion audit row is
    written when it had to be converted.
    """
    if not payment_method or payment_method == PENDING_PAYMENT_METHOD:
        raise ValueError("Paid service income needs a payment method")

    reservation = await get_reservation(session, tenant_id, reservation_id)
    if reservation.status == ReservationStatus.cancelled.value:
        raise ValueError(f"Reservation ID {reservation_id} is cancelled")
    amount = _amount(amount)
    currency = _currency(currency)

    account_stmt = select(Account).where(Account.id == account_id, Account.tenant_id == tenant_id)
    account = (await session.execute(account_stmt)).scalar_one_or_none()
    if not account:
        raise MissingAccount(f"Account ID {account_id} not found")

    account_currency = account.currency
    converted = amount
    exchange_rate = Decimal(1)
    if currency != account_currency:
        converter = await get_converter(session, tenant_id, reservation.location_id)
        try:
            converted = round_money(converter.convert(amount, currency, account_currency))
            exchange_rate = converter.exchange_rate(currency, account_currency)
        except RateNotFound as e:
            raise CurrencyMismatchUnresolvable(f"Cannot convert {currency} to {account_currency}: {e}") from e

    income = Income(
        tenant_id=tenant_id,
        location_id=reservation.location_id,
        booking_id=reservation.id,
        account_id=account.id,
        amount=converted,
        currency=account_currency,
        payment_method=payment_method,
        type=IncomeType.service.value,
        note=note or f"Service paid for reservation {reservation.reservation_number}",
        income_date=date.today(),
        created_by=created_by
    )
    session.add(income)
    await session.commit()

    if currency != account_currency and config.LOG_CURRENCY_CONVERSIONS:
        await log_conversion(
            session,
            tenant_id,
            transaction_type="income",
            transaction_id=income.id,
            from_currency=currency,
            to_currency=account_currency,
            from_amount=amount,
            to_amount=converted,
            exchange_rate=exchange_rate,
            created_by=created_by,
            notes=income.note
        )
    return income
