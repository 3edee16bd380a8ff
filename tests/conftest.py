from decimal import Decimal
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from hotel.config import config
from hotel.database.core import Base
from hotel.database.models import Tenant, Location, Room, Account
from hotel.services.currency_service import seed_default_rates


# Fixture for async session
@pytest_asyncio.fixture
async def async_session():
    # Use in-memory SQLite for tests
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture(autouse=True)
def computed_totals(monkeypatch):
    # Shipped default: stored totals only on PostgreSQL, so SQLite computes from rows
    monkeypatch.setattr(config, "LEDGER_USE_STORED_TOTALS", None)
    monkeypatch.setattr(config, "LOG_CURRENCY_CONVERSIONS", True)


@pytest_asyncio.fixture
async def hotel(async_session):
    """Tenant with one location, two rooms, USD and LKR accounts and the system rates"""
    tenant = Tenant(name="Lagoon Hotels")
    async_session.add(tenant)
    await async_session.flush()

    location = Location(tenant_id=tenant.id, name="Beach Side")
    async_session.add(location)
    await async_session.flush()

    room = Room(
        tenant_id=tenant.id,
        location_id=location.id,
        room_number="101",
        base_rate=Decimal("100.00"),
        currency="USD"
    )
    other_room = Room(
        tenant_id=tenant.id,
        location_id=location.id,
        room_number="102",
        base_rate=Decimal("30000.00"),
        currency="LKR"
    )
    usd_account = Account(tenant_id=tenant.id, location_id=location.id, name="Front desk USD", currency="USD")
    lkr_account = Account(tenant_id=tenant.id, location_id=location.id, name="Front desk LKR", currency="LKR")
    async_session.add_all([room, other_room, usd_account, lkr_account])
    await async_session.commit()

    await seed_default_rates(async_session, tenant.id, location.id)

    return SimpleNamespace(
        tenant_id=tenant.id,
        location_id=location.id,
        room=room,
        other_room=other_room,
        usd_account=usd_account,
        lkr_account=lkr_account
    )

