from datetime import datetime
from pydantic import BaseModel


class CurrencyInfo(BaseModel):
    code: str
    name: str
    symbol: str
    precision: int


class RateQuote(BaseModel):
    from_currency: str
    to_currency: str
    rate: float
    fetched_at: datetime
    expires_at: datetime
    is_fallback: bool = False


class Conversion(BaseModel):
    converted_amount_cents: int
    rate: float
