"""
Error taxonomy for currency, availability and payment operations.

Everything here is recoverable: callers turn these into a message the
operator can act on.
"""
from typing import Optional


class HotelError(Exception):
    """Base class for domain errors"""


class RateNotFound(HotelError, LookupError):
    def __init__(self, currency_code: str, tenant_id=None, location_id=None):
        self.currency_code = currency_code
        self.tenant_id = tenant_id
        self.location_id = location_id
        super().__init__(
            f"No exchange rate for {currency_code} "
            f"(tenant={tenant_id}, location={location_id})"
        )


class RateChangeRejected(HotelError, ValueError):
    pass


class InvalidDateError(HotelError, ValueError):
    pass


class RoomUnavailable(HotelError, ValueError):
    def __init__(self, room_id: int, check_in, check_out):
        self.room_id = room_id
        self.check_in = check_in
        self.check_out = check_out
        super().__init__(f"Room {room_id} is not available from {check_in} to {check_out}")


# --- Payment validation (state: Rejected) ---

class PaymentRejected(HotelError, ValueError):
    """Payment input failed local validation; the user must correct and resubmit."""


class InvalidAmount(PaymentRejected):
    pass


class MissingAccount(PaymentRejected):
    pass


class CurrencyMismatchUnresolvable(PaymentRejected):
    pass


class ExceedsBalance(PaymentRejected):
    def __init__(self, amount, remaining, currency: str):
        self.amount = amount
        self.remaining = remaining
        self.currency = currency
        super().__init__(
            f"Payment amount ({currency} {amount}) exceeds remaining balance "
            f"({currency} {remaining}). Please adjust the amount."
        )


# --- Datastore rejection (state: Failed) ---

class PaymentFailed(HotelError):
    def __init__(self, message: str, hint: Optional[str] = None):
        self.reason = message
        self.hint = hint
        super().__init__(f"{message} ({hint})" if hint else message)
