"""
Reservation balance snapshots in a chosen display currency.

    total_amount = room charge + service charges (pending and paid)
    paid_amount  = payments + paid service charges
    balance_due  = total_amount - paid_amount   (not clamped: a negative
                                                 balance is an overpayment)

When the datastore trigger keeps reservations.total_amount / paid_amount /
balance_amount current, those columns are the authority and only the
service breakdown is computed here.
"""
import logging
from decimal import Decimal
from datetime import date
from typing import Iterable, List, NamedTuple, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hotel.config import config
from hotel.database.models import (
    Reservation, ExternalBooking, Income, Payment,
    IncomeType, ReservationStatus, PENDING_PAYMENT_METHOD
)
from hotel.errors import RateNotFound
from hotel.services.currency_service import CurrencyConverter, get_converter, normalize_code
from hotel.utils.currencies import round_money, to_decimal

ZERO = Decimal(0)


class ChargeLine(NamedTuple):
    amount: Decimal
    currency: str
    kind: str  # "room" or "service"
    status: str = PENDING_PAYMENT_METHOD  # "pending" or the payment method it was paid with

    @property
    def is_pending(self) -> bool:
        return self.status == PENDING_PAYMENT_METHOD


class PaymentLine(NamedTuple):
    amount: Decimal
    currency: str
    payment_method: str
    account_id: Optional[int] = None


class ReservationBalanceSnapshot(NamedTuple):
    """Balance of one reservation, every amount in `currency`"""
    currency: str
    room_charge: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    pending_service_amount: Decimal
    paid_service_amount: Decimal
    balance_due: Decimal  # Positive = guest owes, negative = overpaid
    source: str  # "computed" or "stored"
    warnings: Tuple[str, ...] = ()


class ReservationFinancial(NamedTuple):
    """One row of the reservations financial overview"""
    id: int
    reservation_number: str
    guest_name: Optional[str]
    status: str
    currency: str
    display_currency: str
    check_in_date: date
    check_out_date: date
    nights: int
    room_amount: Decimal
    service_amount: Decimal
    paid_amount: Decimal
    needs_to_pay: Decimal
    is_external: bool = False
    warnings: Tuple[str, ...] = ()


def _convert_line(converter: CurrencyConverter, amount, from_code: str, to_code: str, warnings: list) -> Decimal:
    """Convert one amount; on a missing rate keep it unconverted and record why."""
    try:
        return to_decimal(converter.convert(amount, from_code, to_code))
    except RateNotFound as e:
        message = f"{from_code} {amount} left unconverted: {e}"
        logging.warning(f"Ledger conversion failed, {message}")
        warnings.append(message)
        return to_decimal(amount)


def split_service_charges(
    charge_lines: Iterable[ChargeLine],
    display_currency: str,
    converter: CurrencyConverter,
    warnings: list
) -> Tuple[Decimal, Decimal]:
    """(pending, paid) service totals in the display currency"""
    pending = ZERO
    paid = ZERO
    for line in charge_lines:
        if line.kind != "service":
            continue
        amount = _convert_line(converter, line.amount, line.currency, display_currency, warnings)
        if line.is_pending:
            pending += amount
        else:
            paid += amount
    return pending, paid


def compute_snapshot(
    reservation_currency: str,
    room_charge,
    charge_lines: Iterable[ChargeLine],
    payment_lines: Iterable[PaymentLine],
    display_currency: str,
    converter: CurrencyConverter
) -> ReservationBalanceSnapshot:
    """
    Balance from raw rows. Pure: same rows and rates give the same snapshot.

    room_charge is in reservation_currency. Room-kind entries in charge_lines
    are added on top of it (e.g. extra room nights billed separately).
    """
    display_currency = normalize_code(display_currency)
    warnings: List[str] = []
    charge_lines = list(charge_lines)

    room = _convert_line(converter, room_charge, reservation_currency, display_currency, warnings)
    for line in charge_lines:
        if line.kind == "room":
            room += _convert_line(converter, line.amount, line.currency, display_currency, warnings)

    pending_service, paid_service = split_service_charges(charge_lines, display_currency, converter, warnings)

    payments = ZERO
    for line in payment_lines:
        payments += _convert_line(converter, line.amount, line.currency, display_currency, warnings)

    total = room + pending_service + paid_service
    paid = payments + paid_service

    return ReservationBalanceSnapshot(
        currency=display_currency,
        room_charge=round_money(room),
        total_amount=round_money(total),
        paid_amount=round_money(paid),
        pending_service_amount=round_money(pending_service),
        paid_service_amount=round_money(paid_service),
        balance_due=round_money(total - paid),
        source="computed",
        warnings=tuple(warnings)
    )


def stored_snapshot(
    reservation: Reservation,
    charge_lines: Iterable[ChargeLine],
    display_currency: str,
    converter: CurrencyConverter
) -> ReservationBalanceSnapshot:
    """Snapshot from trigger-maintained reservation columns, converted for display."""
    display_currency = normalize_code(display_currency)
    warnings: List[str] = []
    currency = reservation.currency

    total = _convert_line(converter, reservation.total_amount or ZERO, currency, display_currency, warnings)
    paid = _convert_line(converter, reservation.paid_amount or ZERO, currency, display_currency, warnings)
    if reservation.balance_amount is not None:
        balance = _convert_line(converter, reservation.balance_amount, currency, display_currency, warnings)
    else:
        balance = total - paid

    room_charge = to_decimal(reservation.room_rate) * reservation.nights
    room = _convert_line(converter, room_charge, currency, display_currency, warnings)
    pending_service, paid_service = split_service_charges(charge_lines, display_currency, converter, warnings)

    return ReservationBalanceSnapshot(
        currency=display_currency,
        room_charge=round_money(room),
        total_amount=round_money(total),
        paid_amount=round_money(paid),
        pending_service_amount=round_money(pending_service),
        paid_service_amount=round_money(paid_service),
        balance_due=round_money(balance),
        source="stored",
        warnings=tuple(warnings)
    )


def _has_stored_totals(reservation: Reservation) -> bool:
    return reservation.total_amount is not None and reservation.paid_amount is not None


def stored_totals_enabled(session: AsyncSession, use_stored_totals: Optional[bool] = None) -> bool:
    """
    Whether the trigger-maintained reservation columns can be trusted.
    Explicit argument, then config, then the dialect (triggers exist on PostgreSQL only).
    """
    if use_stored_totals is None:
        use_stored_totals = config.LEDGER_USE_STORED_TOTALS
    if use_stored_totals is None:
        return session.get_bind().dialect.name == "postgresql"
    return bool(use_stored_totals)


# --- Datastore ---

async def get_reservation(session: AsyncSession, tenant_id: int, reservation_id: int) -> Reservation:
    stmt = (
        select(Reservation)
        .where(
            Reservation.id == reservation_id,
            Reservation.tenant_id == tenant_id
        )
        # Totals may have been changed by datastore triggers since the last load
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    reservation = result.scalar_one_or_none()

    if not reservation:
        raise ValueError(f"Reservation ID {reservation_id} not found")
    return reservation


async def get_charge_lines(session: AsyncSession, tenant_id: int, reservation_id: int) -> List[ChargeLine]:
    """Service charges ("income" rows of type service) billed to a reservation"""
    stmt = (
        select(Income)
        .where(
            Income.tenant_id == tenant_id,
            Income.booking_id == reservation_id,
            Income.type == IncomeType.service.value
        )
        .order_by(Income.id)
    )
    result = await session.execute(stmt)
    return [
        ChargeLine(amount=row.amount, currency=row.currency, kind="service", status=row.payment_method)
        for row in result.scalars().all()
    ]


async def get_payment_lines(session: AsyncSession, tenant_id: int, reservation_id: int) -> List[PaymentLine]:
    stmt = (
        select(Payment)
        .where(
            Payment.tenant_id == tenant_id,
            Payment.reservation_id == reservation_id
        )
        .order_by(Payment.id)
    )
    result = await session.execute(stmt)
    return [
        PaymentLine(
            amount=row.amount,
            currency=row.currency,
            payment_method=row.payment_method,
            account_id=row.account_id
        )
        for row in result.scalars().all()
    ]


async def get_reservation_snapshot(
    session: AsyncSession,
    tenant_id: int,
    reservation_id: int,
    display_currency: Optional[str] = None,
    use_stored_totals: Optional[bool] = None
) -> ReservationBalanceSnapshot:
    """
    Balance view for one reservation.

    Args:
        display_currency: Currency of the snapshot (default: config.DEFAULT_DISPLAY_CURRENCY)
        use_stored_totals: Trust the trigger-maintained columns
            (default: config.LEDGER_USE_STORED_TOTALS, unset means only on
            PostgreSQL). Without them the balance is derived from charge and
            payment rows.
    """
    if display_currency is None:
        display_currency = config.DEFAULT_DISPLAY_CURRENCY
    use_stored_totals = stored_totals_enabled(session, use_stored_totals)

    reservation = await get_reservation(session, tenant_id, reservation_id)
    if reservation.status == ReservationStatus.cancelled.value:
        raise ValueError(f"Reservation ID {reservation_id} is cancelled")

    converter = await get_converter(session, tenant_id, reservation.location_id)
    charge_lines = await get_charge_lines(session, tenant_id, reservation_id)

    if use_stored_totals and _has_stored_totals(reservation):
        return stored_snapshot(reservation, charge_lines, display_currency, converter)

    payment_lines = await get_payment_lines(session, tenant_id, reservation_id)
    room_charge = to_decimal(reservation.room_rate) * reservation.nights
    return compute_snapshot(
        reservation.currency,
        room_charge,
        charge_lines,
        payment_lines,
        display_currency,
        converter
    )


async def get_reservation_financials(
    session: AsyncSession,
    tenant_id: int,
    location_id: int,
    display_currency: Optional[str] = None
) -> List[ReservationFinancial]:
    """
    Financial overview of every non-cancelled reservation and channel
    booking of a location, normalized to one currency.
    Channel bookings are prepaid.
    """
    converter = await get_converter(session, tenant_id, location_id)
    display_currency = normalize_code(display_currency or config.DEFAULT_DISPLAY_CURRENCY)

    res_stmt = (
        select(Reservation)
        .where(
            Reservation.tenant_id == tenant_id,
            Reservation.location_id == location_id,
            Reservation.status != ReservationStatus.cancelled.value
        )
        .order_by(Reservation.check_in_date, Reservation.id)
    )
    reservations = (await session.execute(res_stmt)).scalars().all()

    income_by_booking = {}
    if reservations:
        income_stmt = select(Income).where(
            Income.tenant_id == tenant_id,
            Income.type == IncomeType.service.value,
            Income.booking_id.in_([r.id for r in reservations])
        )
        for row in (await session.execute(income_stmt)).scalars().all():
            income_by_booking.setdefault(row.booking_id, []).append(
                ChargeLine(amount=row.amount, currency=row.currency, kind="service", status=row.payment_method)
            )

    payments_by_booking = {}
    if reservations:
        payment_stmt = select(Payment).where(
            Payment.tenant_id == tenant_id,
            Payment.reservation_id.in_([r.id for r in reservations])
        )
        for row in (await session.execute(payment_stmt)).scalars().all():
            payments_by_booking.setdefault(row.reservation_id, []).append(row)

    financials = []
    for reservation in reservations:
        warnings: List[str] = []
        room_charge = to_decimal(reservation.room_rate) * reservation.nights
        room = _convert_line(converter, room_charge, reservation.currency, display_currency, warnings)
        pending, paid_service = split_service_charges(
            income_by_booking.get(reservation.id, []), display_currency, converter, warnings
        )
        payments = ZERO
        for payment in payments_by_booking.get(reservation.id, []):
            payments += _convert_line(converter, payment.amount, payment.currency, display_currency, warnings)
        services = pending + paid_service
        paid = payments + paid_service
        financials.append(ReservationFinancial(
            id=reservation.id,
            reservation_number=reservation.reservation_number,
            guest_name=reservation.guest_name,
            status=reservation.status,
            currency=reservation.currency,
            display_currency=display_currency,
            check_in_date=reservation.check_in_date,
            check_out_date=reservation.check_out_date,
            nights=reservation.nights,
            room_amount=round_money(room),
            service_amount=round_money(services),
            paid_amount=round_money(paid),
            needs_to_pay=round_money(room + services - paid),
            warnings=tuple(warnings)
        ))

    ext_stmt = (
        select(ExternalBooking)
        .where(
            ExternalBooking.tenant_id == tenant_id,
            ExternalBooking.location_id == location_id,
            ExternalBooking.status != ReservationStatus.cancelled.value
        )
        .order_by(ExternalBooking.check_in, ExternalBooking.id)
    )
    for booking in (await session.execute(ext_stmt)).scalars().all():
        warnings = []
        currency = booking.currency or "USD"
        total = _convert_line(converter, booking.total_amount or ZERO, currency, display_currency, warnings)
        financials.append(ReservationFinancial(
            id=booking.id,
            reservation_number=f"{booking.source.upper()}-{booking.external_id}",
            guest_name=booking.guest_name,
            status=booking.status,
            currency=currency,
            display_currency=display_currency,
            check_in_date=booking.check_in,
            check_out_date=booking.check_out,
            nights=(booking.check_out - booking.check_in).days,
            room_amount=round_money(total),
            service_amount=round_money(ZERO),
            paid_amount=round_money(total),
            needs_to_pay=round_money(ZERO),
            is_external=True,
            warnings=tuple(warnings)
        ))

    return financials
