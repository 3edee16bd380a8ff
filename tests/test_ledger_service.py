import pytest
from datetime import date
from decimal import Decimal

from hotel.config import config
from hotel.database.models import Reservation, Income, Payment, ExternalBooking, ReservationStatus
from hotel.services.currency_service import CurrencyConverter
from hotel.services.ledger_service import (
    ChargeLine, PaymentLine, compute_snapshot,
    get_reservation_snapshot, get_reservation_financials, stored_totals_enabled
)


RATES = CurrencyConverter({"USD": "1", "LKR": "300", "EUR": "0.85"})


def test_basic_balance():
    """3 nights x 100 USD + 50 USD service - 200 USD paid"""
    snapshot = compute_snapshot(
        "USD",
        Decimal("300"),
        [ChargeLine(Decimal("50"), "USD", "service")],
        [PaymentLine(Decimal("200"), "USD", "cash")],
        "USD",
        RATES
    )

    assert snapshot.total_amount == Decimal("350.00")
    assert snapshot.paid_amount == Decimal("200.00")
    assert snapshot.balance_due == Decimal("150.00")
    assert snapshot.pending_service_amount == Decimal("50.00")
    assert snapshot.source == "computed"
    assert snapshot.warnings == ()


def test_snapshot_is_idempotent():
    charges = [
        ChargeLine(Decimal("15000"), "LKR", "service"),
        ChargeLine(Decimal("20"), "EUR", "service", status="card"),
    ]
    payments = [PaymentLine(Decimal("30000"), "LKR", "cash")]

    first = compute_snapshot("USD", Decimal("250"), charges, payments, "LKR", RATES)
    second = compute_snapshot("USD", Decimal("250"), charges, payments, "LKR", RATES)
    assert first == second


def test_paid_service_counts_on_both_sides():
    snapshot = compute_snapshot(
        "USD",
        Decimal("100"),
        [ChargeLine(Decimal("40"), "USD", "service", status="cash")],
        [],
        "USD",
        RATES
    )
    assert snapshot.total_amount == Decimal("140.00")
    assert snapshot.paid_amount == Decimal("40.00")
    assert snapshot.paid_service_amount == Decimal("40.00")
    assert snapshot.balance_due == Decimal("100.00")


def test_overpayment_is_not_clamped():
    snapshot = compute_snapshot(
        "USD", Decimal("100"), [], [PaymentLine(Decimal("120"), "USD", "cash")], "USD", RATES
    )
    assert snapshot.balance_due == Decimal("-20.00")


def test_mixed_currencies_in_display_currency():
    snapshot = compute_snapshot(
        "LKR",
        Decimal("60000"),
        [ChargeLine(Decimal("17"), "EUR", "service")],
        [PaymentLine(Decimal("30000"), "LKR", "cash")],
        "USD",
        RATES
    )
    assert snapshot.currency == "USD"
    assert snapshot.room_charge == Decimal("200.00")
    assert snapshot.total_amount == Decimal("220.00")
    assert snapshot.paid_amount == Decimal("100.00")
    assert snapshot.balance_due == Decimal("120.00")


def test_room_kind_lines_add_to_room_charge():
    snapshot = compute_snapshot(
        "USD", Decimal("200"), [ChargeLine(Decimal("100"), "USD", "room")], [], "USD", RATES
    )
    assert snapshot.room_charge == Decimal("300.00")
    assert snapshot.total_amount == Decimal("300.00")


def test_missing_rate_is_masked_with_warning():
    snapshot = compute_snapshot(
        "USD",
        Decimal("100"),
        [ChargeLine(Decimal("1000"), "JPY", "service")],
        [],
        "USD",
        RATES
    )
    # Unconverted amount is used as-is
    assert snapshot.total_amount == Decimal("1100.00")
    assert len(snapshot.warnings) == 1
    assert "JPY" in snapshot.warnings[0]


# --- Datastore ---

async def add_reservation(session, hotel, number="RES-20260301-0001", currency="USD", rate="100", **kwargs):
    reservation = Reservation(
        tenant_id=hotel.tenant_id,
        location_id=hotel.location_id,
        room_id=hotel.room.id,
        reservation_number=number,
        guest_name="Jane Guest",
        check_in_date=date(2026, 3, 1),
        check_out_date=date(2026, 3, 4),
        nights=3,
        room_rate=Decimal(rate),
        currency=currency,
        **kwargs
    )
    session.add(reservation)
    await session.commit()
    return reservation


@pytest.mark.asyncio
async def test_snapshot_from_rows(async_session, hotel):
    reservation = await add_reservation(async_session, hotel)
    async_session.add(Income(
        tenant_id=hotel.tenant_id,
        location_id=hotel.location_id,
        booking_id=reservation.id,
        amount=Decimal("50"),
        currency="USD"
    ))
    async_session.add(Payment(
        tenant_id=hotel.tenant_id,
        reservation_id=reservation.id,
        account_id=hotel.usd_account.id,
        payment_number="PAY-1",
        amount=Decimal("200"),
        currency="USD"
    ))
    await async_session.commit()

    snapshot = await get_reservation_snapshot(async_session, hotel.tenant_id, reservation.id, "USD")
    assert (snapshot.total_amount, snapshot.paid_amount, snapshot.balance_due) == (
        Decimal("350.00"), Decimal("200.00"), Decimal("150.00")
    )

    in_lkr = await get_reservation_snapshot(async_session, hotel.tenant_id, reservation.id, "LKR")
    assert in_lkr.balance_due == Decimal("45000.00")


@pytest.mark.asyncio
async def test_general_income_is_not_billed(async_session, hotel):
    reservation = await add_reservation(async_session, hotel)
    async_session.add(Income(
        tenant_id=hotel.tenant_id,
        location_id=hotel.location_id,
        booking_id=reservation.id,
        amount=Decimal("999"),
        currency="USD",
        payment_method="cash",
        type="general"
    ))
    await async_session.commit()

    snapshot = await get_reservation_snapshot(async_session, hotel.tenant_id, reservation.id, "USD")
    assert snapshot.total_amount == Decimal("300.00")


@pytest.mark.asyncio
async def test_stored_totals_are_trusted(async_session, hotel):
    reservation = await add_reservation(
        async_session,
        hotel,
        total_amount=Decimal("350"),
        paid_amount=Decimal("200"),
        balance_amount=Decimal("150")
    )

    snapshot = await get_reservation_snapshot(
        async_session, hotel.tenant_id, reservation.id, "USD", use_stored_totals=True
    )
    assert snapshot.source == "stored"
    assert snapshot.total_amount == Decimal("350.00")
    assert snapshot.balance_due == Decimal("150.00")
    assert snapshot.room_charge == Decimal("300.00")


@pytest.mark.asyncio
async def test_snapshot_rejects_missing_and_cancelled(async_session, hotel):
    reservation = await add_reservation(async_session, hotel, status=ReservationStatus.cancelled.value)

    with pytest.raises(ValueError):
        await get_reservation_snapshot(async_session, hotel.tenant_id, reservation.id)
    with pytest.raises(ValueError):
        await get_reservation_snapshot(async_session, hotel.tenant_id, 9999)
    # Other tenants cannot see it either
    with pytest.raises(ValueError):
        await get_reservation_snapshot(async_session, hotel.tenant_id + 1, reservation.id)


@pytest.mark.asyncio
async def test_financials_include_channel_bookings(async_session, hotel):
    reservation = await add_reservation(async_session, hotel, currency="LKR", rate="30000")
    await add_reservation(
        async_session, hotel, number="RES-20260301-0002", status=ReservationStatus.cancelled.value
    )
    async_session.add_all([
        Income(
            tenant_id=hotel.tenant_id,
            location_id=hotel.location_id,
            booking_id=reservation.id,
            amount=Decimal("15000"),
            currency="LKR"
        ),
        Income(
            tenant_id=hotel.tenant_id,
            location_id=hotel.location_id,
            booking_id=reservation.id,
            amount=Decimal("10"),
            currency="USD",
            payment_method="card",
            account_id=hotel.usd_account.id
        ),
        Payment(
            tenant_id=hotel.tenant_id,
            reservation_id=reservation.id,
            account_id=hotel.lkr_account.id,
            payment_number="PAY-2",
            amount=Decimal("30000"),
            currency="LKR"
        ),
        ExternalBooking(
            tenant_id=hotel.tenant_id,
            location_id=hotel.location_id,
            room_id=None,
            source="booking_com",
            external_id="4471",
            guest_name="Channel Guest",
            check_in=date(2026, 3, 5),
            check_out=date(2026, 3, 7),
            total_amount=Decimal("170"),
            currency="EUR"
        ),
    ])
    await async_session.commit()

    rows = await get_reservation_financials(async_session, hotel.tenant_id, hotel.location_id, "usd")
    assert len(rows) == 2

    own, channel = rows
    assert own.is_external is False
    assert own.room_amount == Decimal("300.00")
    assert own.service_amount == Decimal("60.00")
    assert own.paid_amount == Decimal("110.00")
    assert own.needs_to_pay == Decimal("250.00")

    assert channel.is_external is True
    assert channel.reservation_number == "BOOKING_COM-4471"
    assert channel.nights == 2
    assert channel.room_amount == Decimal("200.00")
    assert channel.paid_amount == Decimal("200.00")
    assert channel.needs_to_pay == Decimal("0.00")


@pytest.mark.asyncio
async def test_stored_totals_follow_the_dialect(async_session):
    # No ledger triggers on SQLite
    assert config.LEDGER_USE_STORED_TOTALS is None
    assert stored_totals_enabled(async_session) is False
    assert stored_totals_enabled(async_session, True) is True


@pytest.mark.asyncio
async def test_stale_stored_totals_ignored_by_default(async_session, hotel):
    # Columns as written at booking time, before any trigger ran
    reservation = await add_reservation(
        async_session,
        hotel,
        total_amount=Decimal("300"),
        paid_amount=Decimal("0"),
        balance_amount=Decimal("300")
    )
    async_session.add(Payment(
        tenant_id=hotel.tenant_id,
        reservation_id=reservation.id,
        account_id=hotel.usd_account.id,
        payment_number="PAY-3",
        amount=Decimal("300"),
        currency="USD"
    ))
    await async_session.commit()

    snapshot = await get_reservation_snapshot(async_session, hotel.tenant_id, reservation.id, "USD")
    assert snapshot.source == "computed"
    assert snapshot.paid_amount == Decimal("300.00")
    assert snapshot.balance_due == Decimal("0.00")


@pytest.mark.asyncio
async def test_financials_default_to_configured_currency(async_session, hotel, monkeypatch):
    monkeypatch.setattr(config, "DEFAULT_DISPLAY_CURRENCY", "LKR")
    await add_reservation(async_session, hotel)

    rows = await get_reservation_financials(async_session, hotel.tenant_id, hotel.location_id)
    assert len(rows) == 1
    assert rows[0].display_currency == "LKR"
    assert rows[0].room_amount == Decimal("90000.00")
    assert rows[0].needs_to_pay == Decimal("90000.00")
