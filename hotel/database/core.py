from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from hotel.config import config

engine = create_async_engine(config.DATABASE_URL, echo=config.DB_ECHO)

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

class Base(DeclarativeBase):
    pass

async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


async def init_models(bind=None):
    """Create all tables (used for SQLite/dev setups; production runs Alembic)."""
    # Import models so they register on Base.metadata
    import hotel.database.models  # noqa: F401

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
