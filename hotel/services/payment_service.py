"""
Payment recording against a reservation.

Each attempt moves through:

    draft -> validating -> rejected
                        -> recording -> recorded
                                     -> failed

Validation happens locally against a balance read just before the write.
That check is advisory: the datastore trigger compares the payment with the
reservation balance again when the row is inserted and may still refuse it.
The reservation's paid/balance columns are updated by that trigger, never
here.
"""
import enum
import logging
import random
import time
from decimal import Decimal
from typing import NamedTuple, Optional

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hotel.config import config
from hotel.database.models import (
    Account, Payment, CurrencyConversionLog, Reservation,
    PaymentType, ReservationStatus
)
from hotel.errors import (
    PaymentRejected, InvalidAmount, MissingAccount, ExceedsBalance,
    CurrencyMismatchUnresolvable, PaymentFailed, RateNotFound
)
from hotel.schemas.validation import AmountModel, CurrencyCodeModel, first_error
from hotel.services.currency_service import get_converter
from hotel.services.ledger_service import get_reservation, get_reservation_snapshot
from hotel.utils.currencies import round_money


class PaymentState(str, enum.Enum):
    draft = "draft"
    validating = "validating"
    rejected = "rejected"
    recording = "recording"
    recorded = "recorded"
    failed = "failed"


class PaymentResult(NamedTuple):
    state: PaymentState
    payment: Optional[Payment] = None
    amount: Optional[Decimal] = None  # Stored amount, reservation currency
    currency: Optional[str] = None
    conversion: Optional[CurrencyConversionLog] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.state == PaymentState.recorded

    @property
    def message(self) -> Optional[str]:
        return str(self.error) if self.error else None


def _generate_payment_number() -> str:
    return f"PAY-{int(time.time() * 1000)}{random.randint(100, 999)}"


def server_hint(exc: SQLAlchemyError) -> Optional[str]:
    """HINT text of a PostgreSQL error (asyncpg), if the server sent one"""
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        hint = getattr(candidate, "hint", None)
        if hint:
            return str(hint)
    return None


def _reject(error: PaymentRejected, reservation_id: int) -> PaymentResult:
    logging.info(f"Payment for reservation {reservation_id} rejected: {error}")
    return PaymentResult(state=PaymentState.rejected, error=error)


async def _get_account(session: AsyncSession, tenant_id: int, account_id) -> Optional[Account]:
    stmt = select(Account).where(
        Account.id == account_id,
        Account.tenant_id == tenant_id,
        Account.is_active == True
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def record_payment(
    session: AsyncSession,
    tenant_id: int,
    reservation_id: int,
    amount,
    currency: str,
    account_id: Optional[int],
    payment_method: str = "cash",
    *,
    payment_type: str = PaymentType.partial.value,
    notes: Optional[str] = None,
    reference_number: Optional[str] = None,
    created_by: Optional[int] = None,
    mark_as_complete: bool = False,
    use_stored_totals: Optional[bool] = None
) -> PaymentResult:
    """
    Validate and insert one payment.

    The amount is entered in `currency` and stored converted into the
    reservation currency, which is what the datastore trigger compares
    against the reservation balance. When a conversion happened an audit
    row is written to currency_conversion_log.

    Returns:
        PaymentResult: state `recorded`, `rejected` (validation error in
        `error`) or `failed` (datastore refused the write, PaymentFailed
        with the server hint in `error`). Nothing is retried.
    """
    reservation = await get_reservation(session, tenant_id, reservation_id)
    if reservation.status == ReservationStatus.cancelled.value:
        raise ValueError(f"Reservation ID {reservation_id} is cancelled")

    try:
        amount = AmountModel(amount=amount).amount
    except ValidationError as e:
        return _reject(InvalidAmount(f"Amount must be greater than 0 ({first_error(e)})"), reservation_id)

    if not payment_method or not str(payment_method).strip():
        return _reject(PaymentRejected("Please select a payment method"), reservation_id)

    if account_id is None or str(account_id).strip() == "":
        return _reject(MissingAccount("Please select an account"), reservation_id)

    account = await _get_account(session, tenant_id, account_id)
    if not account:
        return _reject(MissingAccount(f"Account ID {account_id} not found"), reservation_id)

    try:
        currency = CurrencyCodeModel(code=currency).code
    except ValidationError as e:
        return _reject(CurrencyMismatchUnresolvable(f"Invalid currency: {first_error(e)}"), reservation_id)

    target_currency = reservation.currency
    exchange_rate = Decimal(1)
    converted = amount
    if currency != target_currency:
        try:
            async with session.begin_nested():
                converter = await get_converter(session, tenant_id, reservation.location_id)
            converted = converter.convert(amount, currency, target_currency)
            exchange_rate = converter.exchange_rate(currency, target_currency)
        except RateNotFound as e:
            return _reject(
                CurrencyMismatchUnresolvable(f"Cannot convert {currency} to {target_currency}: {e}"),
                reservation_id
            )
        except SQLAlchemyError as e:
            logging.error(f"Rate lookup failed for reservation {reservation_id}: {e}")
            return _reject(
                CurrencyMismatchUnresolvable(f"Cannot convert {currency} to {target_currency}"),
                reservation_id
            )

    stored_amount = round_money(converted)
    if stored_amount <= 0:
        return _reject(InvalidAmount("Amount must be greater than 0"), reservation_id)

    # Advisory overpayment guard (balance may be slightly stale)
    snapshot = await get_reservation_snapshot(
        session,
        tenant_id,
        reservation_id,
        display_currency=target_currency,
        use_stored_totals=use_stored_totals
    )
    remaining = snapshot.total_amount - snapshot.paid_amount
    if stored_amount > remaining:
        return _reject(ExceedsBalance(stored_amount, round_money(remaining), target_currency), reservation_id)

    payment = Payment(
        tenant_id=tenant_id,
        reservation_id=reservation_id,
        account_id=account.id,
        payment_number=_generate_payment_number(),
        amount=stored_amount,
        currency=target_currency,
        payment_method=payment_method,
        payment_type=payment_type,
        notes=notes,
        reference_number=reference_number or None,
        created_by=created_by
    )
    session.add(payment)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        hint = server_hint(e) if isinstance(e, DBAPIError) else None
        reason = str(getattr(e, "orig", None) or e)
        logging.error(f"Payment for reservation {reservation_id} refused by datastore: {reason}")
        return PaymentResult(state=PaymentState.failed, error=PaymentFailed(reason, hint))

    logging.info(
        f"Payment {payment.payment_number} recorded: {target_currency} {stored_amount} "
        f"for reservation {reservation_id}"
    )

    conversion = None
    if currency != target_currency and config.LOG_CURRENCY_CONVERSIONS:
        conversion = await log_conversion(
            session,
            tenant_id,
            transaction_type="payment",
            transaction_id=payment.id,
            from_currency=currency,
            to_currency=target_currency,
            from_amount=amount,
            to_amount=stored_amount,
            exchange_rate=exchange_rate,
            created_by=created_by,
            notes=f"Payment for reservation {reservation.reservation_number}"
        )

    if mark_as_complete:
        await _mark_checked_out(session, tenant_id, reservation_id)

    return PaymentResult(
        state=PaymentState.recorded,
        payment=payment,
        amount=stored_amount,
        currency=target_currency,
        conversion=conversion
    )


async def log_conversion(
    session: AsyncSession,
    tenant_id: int,
    transaction_type: str,
    transaction_id: int,
    from_currency: str,
    to_currency: str,
    from_amount,
    to_amount,
    exchange_rate,
    created_by: Optional[int] = None,
    notes: Optional[str] = None
) -> Optional[CurrencyConversionLog]:
    """Audit row for a cross-currency transaction. Failure is logged, not raised."""
    entry = CurrencyConversionLog(
        tenant_id=tenant_id,
        transaction_type=transaction_type,
        transaction_id=transaction_id,
        from_currency=from_currency,
        to_currency=to_currency,
        from_amount=round_money(from_amount),
        to_amount=round_money(to_amount),
        exchange_rate=exchange_rate,
        rate_source="system",
        created_by=created_by,
        notes=notes
    )
    session.add(entry)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logging.error(f"Failed to log currency conversion for {transaction_type} {transaction_id}: {e}")
        return None
    return entry


async def _mark_checked_out(session: AsyncSession, tenant_id: int, reservation_id: int) -> None:
    try:
        await session.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.tenant_id == tenant_id)
            .values(status=ReservationStatus.checked_out.value)
        )
        await session.commit()
    except SQLAlchemyError as e:
        # Payment is already stored; only the status change is lost
        await session.rollback()
        logging.error(f"Error updating reservation {reservation_id} status: {e}")
