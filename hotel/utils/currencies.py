from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, NamedTuple, Optional


# ========== Currency Registry ==========
class CurrencyInfo(NamedTuple):
    code: str
    name: str
    symbol: str
    default_usd_rate: Optional[Decimal]  # None = no system-seeded rate


class CurrencyRegistry:
    """Single lookup for currency symbols, names and system-seeded rates."""

    def __init__(self):
        self._currencies: Dict[str, CurrencyInfo] = {}

    def register(
        self,
        code: str,
        name: str,
        symbol: str,
        default_usd_rate: Optional[str] = None
    ) -> "CurrencyRegistry":
        code = code.strip().upper()
        rate = Decimal(default_usd_rate) if default_usd_rate is not None else None
        self._currencies[code] = CurrencyInfo(code, name, symbol, rate)
        return self

    def get(self, code: str) -> Optional[CurrencyInfo]:
        return self._currencies.get((code or "").strip().upper())

    def __contains__(self, code: str) -> bool:
        return self.get(code) is not None

    def symbol(self, code: str) -> str:
        info = self.get(code)
        return info.symbol if info else (code or "").upper()

    def system_rates(self) -> Dict[str, Decimal]:
        """Rates seeded for every new location (non-custom rows)"""
        return {
            info.code: info.default_usd_rate
            for info in self._currencies.values()
            if info.default_usd_rate is not None
        }


currencies = (
    CurrencyRegistry()
    .register("USD", "US Dollar", "$", "1")
    .register("LKR", "Sri Lankan Rupee", "Rs.", "300")
    .register("EUR", "Euro", "€", "0.85")
    .register("GBP", "British Pound", "£", "0.75")
)

BASE_CURRENCY = "USD"

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps the value the user typed instead of its binary expansion
        return Decimal(str(value))
    return Decimal(value)


def round_money(value) -> Decimal:
    """Round to 2 decimal places. Apply only when displaying or persisting."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_currency(amount, code: str) -> str:
    """Format amount with symbol: format_currency(1234.5, "USD") -> "$1,234.50" """
    return f"{currencies.symbol(code)}{round_money(amount):,.2f}"
