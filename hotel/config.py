import os
import logging
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Database Configuration
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASS = os.getenv("DB_PASS", "postgres")
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "hotel")
    DB_ECHO = _env_flag("DB_ECHO", False)

    @property
    def DATABASE_URL(self):
        # Prefer DATABASE_URL env var if set (for SQLite support)
        url = os.getenv("DATABASE_URL")
        if url:
            return url

        # Build PostgreSQL URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Currency used for balance views when the caller does not pick one
    DEFAULT_DISPLAY_CURRENCY = os.getenv("DEFAULT_DISPLAY_CURRENCY", "USD").strip().upper()

    # PostgreSQL keeps reservations.total_amount / paid_amount / balance_amount
    # up to date with triggers (see migrations/versions/002_ledger_triggers.py).
    # Unset: trust those columns only on PostgreSQL, compute from rows elsewhere.
    LEDGER_USE_STORED_TOTALS = _env_flag("LEDGER_USE_STORED_TOTALS", None)

    # Write a currency_conversion_log row whenever a payment or income amount
    # is converted across currencies
    LOG_CURRENCY_CONVERSIONS = _env_flag("LOG_CURRENCY_CONVERSIONS", True)

config = Config()

# Log configuration on startup
logging.info(f"Database: {config.DATABASE_URL.split('@')[1] if '@' in config.DATABASE_URL else 'SQLite'}")
logging.info(
    f"Ledger: display currency {config.DEFAULT_DISPLAY_CURRENCY}, "
    f"stored totals {'auto' if config.LEDGER_USE_STORED_TOTALS is None else config.LEDGER_USE_STORED_TOTALS}"
)
