"""
Currency conversion over a per-tenant, per-location USD pivot table.

Every currency row stores how many units of that currency make 1 USD
(usd_rate). Converting A -> B goes through USD:

    amount_usd = amount / usd_rate(A)
    result     = amount_usd * usd_rate(B)

Nothing is rounded here; callers round with round_money() when they
display or persist a value.
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, NamedTuple, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hotel.database.models import CurrencyRate
from hotel.errors import RateNotFound, RateChangeRejected
from hotel.schemas.validation import CurrencyRateModel, CurrencyCodeModel, first_error
from hotel.utils.currencies import BASE_CURRENCY, currencies, round_money, to_decimal

ONE = Decimal(1)


def normalize_code(code: str) -> str:
    if not code or not str(code).strip():
        raise ValueError("Currency code must not be empty")
    return str(code).strip().upper()


class CurrencyConverter:
    """Pure converter over an already fetched rate table."""

    def __init__(
        self,
        rates: Dict[str, Decimal],
        tenant_id: Optional[int] = None,
        location_id: Optional[int] = None
    ):
        self.tenant_id = tenant_id
        self.location_id = location_id
        self._rates = {normalize_code(code): to_decimal(rate) for code, rate in rates.items()}
        # USD is the pivot: always exactly 1
        self._rates[BASE_CURRENCY] = ONE

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[CurrencyRate],
        tenant_id: Optional[int] = None,
        location_id: Optional[int] = None
    ) -> "CurrencyConverter":
        return cls(
            {row.currency_code: row.usd_rate for row in rows},
            tenant_id=tenant_id,
            location_id=location_id
        )

    def rate(self, code: str) -> Decimal:
        code = normalize_code(code)
        try:
            return self._rates[code]
        except KeyError:
            raise RateNotFound(code, self.tenant_id, self.location_id) from None

    def exchange_rate(self, from_code: str, to_code: str) -> Decimal:
        """Units of to_code received for 1 unit of from_code"""
        if normalize_code(from_code) == normalize_code(to_code):
            return ONE
        return self.rate(to_code) / self.rate(from_code)

    def convert(self, amount, from_code: str, to_code: str):
        if normalize_code(from_code) == normalize_code(to_code):
            return amount

        rate_from = self.rate(from_code)
        rate_to = self.rate(to_code)
        amount_usd = to_decimal(amount) / rate_from
        return amount_usd * rate_to


class ConversionOutcome(NamedTuple):
    amount: Decimal
    currency: str
    converted: bool
    warning: Optional[str] = None


# --- Rate table (datastore) ---

async def _select_rates(session: AsyncSession, tenant_id: int, location_id: int) -> List[CurrencyRate]:
    stmt = (
        select(CurrencyRate)
        .where(
            CurrencyRate.tenant_id == tenant_id,
            CurrencyRate.location_id == location_id
        )
        .order_by(CurrencyRate.currency_code)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_currency_rates(
    session: AsyncSession,
    tenant_id: int,
    location_id: int
) -> List[CurrencyRate]:
    """
    Get all rates for a location.

    The first read for a location without a USD row inserts it (usd_rate = 1)
    inside a savepoint; the caller's transaction is neither committed nor
    rolled back here.
    """
    rows = await _select_rates(session, tenant_id, location_id)
    if any(row.currency_code == BASE_CURRENCY for row in rows):
        return rows

    try:
        async with session.begin_nested():
            session.add(CurrencyRate(
                tenant_id=tenant_id,
                location_id=location_id,
                currency_code=BASE_CURRENCY,
                usd_rate=ONE,
                is_custom=False
            ))
        logging.info(f"Created USD base rate for tenant {tenant_id}, location {location_id}")
    except IntegrityError:
        # Another screen inserted it first
        logging.info(f"USD base rate for location {location_id} already created elsewhere")

    return await _select_rates(session, tenant_id, location_id)


async def get_converter(
    session: AsyncSession,
    tenant_id: int,
    location_id: int
) -> CurrencyConverter:
    rows = await get_currency_rates(session, tenant_id, location_id)
    return CurrencyConverter.from_rows(rows, tenant_id, location_id)


async def convert_currency(
    session: AsyncSession,
    amount,
    from_code: str,
    to_code: str,
    tenant_id: int,
    location_id: int
):
    """
    Convert amount between two currencies using fresh rates.
    Same currency returns the amount unchanged without touching the datastore.
    Raises RateNotFound if either currency has no rate for the location.
    """
    if normalize_code(from_code) == normalize_code(to_code):
        return amount

    converter = await get_converter(session, tenant_id, location_id)
    return converter.convert(amount, from_code, to_code)


async def convert_with_fallback(
    session: AsyncSession,
    amount,
    from_code: str,
    to_code: str,
    tenant_id: int,
    location_id: int
) -> ConversionOutcome:
    """
    Conversion for interactive flows (e.g. switching a currency selector).

    On any lookup failure the original amount and currency come back
    unchanged together with a warning, so the action still completes.
    """
    try:
        # Savepoint: a failed lookup must not abort the caller's transaction
        async with session.begin_nested():
            converted = await convert_currency(session, amount, from_code, to_code, tenant_id, location_id)
    except RateNotFound as e:
        logging.warning(f"Currency conversion {from_code}->{to_code} failed: {e}")
        return ConversionOutcome(amount, from_code, False, f"Could not convert to {to_code}: {e}")
    except SQLAlchemyError as e:
        logging.warning(f"Currency conversion {from_code}->{to_code} failed (datastore): {e}")
        return ConversionOutcome(amount, from_code, False, f"Could not load exchange rates for {to_code}")

    if normalize_code(from_code) == normalize_code(to_code):
        return ConversionOutcome(amount, to_code, False)
    return ConversionOutcome(round_money(converted), normalize_code(to_code), True)


async def set_currency_rate(
    session: AsyncSession,
    tenant_id: int,
    location_id: int,
    code: str,
    usd_rate,
    is_custom: bool = True
) -> CurrencyRate:
    """
    Create or update the rate of a currency (last write wins).
    USD is fixed at 1 and any other value is rejected.
    """
    try:
        data = CurrencyRateModel(code=code, usd_rate=usd_rate)
    except ValidationError as e:
        raise RateChangeRejected(f"Invalid rate for {code}: {first_error(e)}") from e

    if data.code == BASE_CURRENCY and data.usd_rate != ONE:
        raise RateChangeRejected("USD rate is fixed at 1 and cannot be changed")

    stmt = select(CurrencyRate).where(
        CurrencyRate.tenant_id == tenant_id,
        CurrencyRate.location_id == location_id,
        CurrencyRate.currency_code == data.code
    )
    result = await session.execute(stmt)
    rate = result.scalar_one_or_none()

    if rate:
        if data.code == BASE_CURRENCY:
            return rate
        rate.usd_rate = data.usd_rate
    else:
        rate = CurrencyRate(
            tenant_id=tenant_id,
            location_id=location_id,
            currency_code=data.code,
            usd_rate=data.usd_rate,
            is_custom=is_custom and data.code != BASE_CURRENCY
        )
        session.add(rate)

    await session.commit()
    logging.info(f"Rate {data.code}={data.usd_rate} saved for tenant {tenant_id}, location {location_id}")
    return rate


async def delete_currency_rate(
    session: AsyncSession,
    tenant_id: int,
    location_id: int,
    code: str
) -> None:
    """Delete a custom rate. USD and system-seeded rates cannot be deleted."""
    try:
        code = CurrencyCodeModel(code=code).code
    except ValidationError as e:
        raise RateChangeRejected(f"Invalid currency code: {first_error(e)}") from e

    if code == BASE_CURRENCY:
        raise RateChangeRejected("USD rate cannot be deleted")

    stmt = select(CurrencyRate).where(
        CurrencyRate.tenant_id == tenant_id,
        CurrencyRate.location_id == location_id,
        CurrencyRate.currency_code == code
    )
    result = await session.execute(stmt)
    rate = result.scalar_one_or_none()

    if not rate:
        raise RateNotFound(code, tenant_id, location_id)

    if not rate.is_custom:
        raise RateChangeRejected(f"{code} is a system currency and cannot be deleted")

    await session.delete(rate)
    await session.commit()
    logging.info(f"Rate {code} deleted for tenant {tenant_id}, location {location_id}")


async def seed_default_rates(
    session: AsyncSession,
    tenant_id: int,
    location_id: int
) -> List[CurrencyRate]:
    """Insert the system currencies missing for this location (existing rows are kept)."""
    existing = {row.currency_code for row in await _select_rates(session, tenant_id, location_id)}

    for code, usd_rate in currencies.system_rates().items():
        if code in existing:
            continue
        session.add(CurrencyRate(
            tenant_id=tenant_id,
            location_id=location_id,
            currency_code=code,
            usd_rate=usd_rate,
            is_custom=False
        ))

    await session.commit()
    return await _select_rates(session, tenant_id, location_id)
