from decimal import Decimal
from datetime import date
from pydantic import BaseModel, Field, field_validator, model_validator, ValidationError

class AmountModel(BaseModel):
    amount: Decimal = Field(gt=0, description="Positive amount")

    @field_validator('amount', mode='before')
    def parse_decimal(cls, v):
        if isinstance(v, str):
            # Replace common separators
            v = v.replace(',', '.').replace(' ', '')
        if isinstance(v, float):
            v = str(v)
        return v

class CurrencyCodeModel(BaseModel):
    code: str = Field(pattern=r'^[A-Z]{3}$')

    @field_validator('code', mode='before')
    def normalize(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
        return v

class CurrencyRateModel(BaseModel):
    code: str = Field(pattern=r'^[A-Z]{3}$')
    usd_rate: Decimal = Field(gt=0, description="Units of this currency per 1 USD")

    @field_validator('code', mode='before')
    def normalize(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
        return v

    @field_validator('usd_rate', mode='before')
    def parse_rate(cls, v):
        if isinstance(v, str):
            v = v.replace(',', '.').replace(' ', '')
        if isinstance(v, float):
            v = str(v)
        return v

class StayDatesModel(BaseModel):
    check_in: date
    check_out: date

    @model_validator(mode='after')
    def check_order(self):
        if self.check_out <= self.check_in:
            raise ValueError("Check-out must be after check-in")
        return self

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days


def first_error(exc: ValidationError) -> str:
    """Short human readable message from a pydantic ValidationError"""
    errors = exc.errors()
    if not errors:
        return str(exc)
    return errors[0].get("msg", str(exc))
