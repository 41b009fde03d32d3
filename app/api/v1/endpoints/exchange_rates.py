from typing import List
from fastapi import APIRouter, Depends

from app.api.deps import get_currency_service
from app.core.auth import get_current_user_id
from app.core.exceptions import LedgerValidationError
from app.schemas.exchange_rate import CurrencyInfo, RateQuote
from app.services.currency_service import CurrencyService

router = APIRouter()

@router.get("/currencies", response_model=List[CurrencyInfo])
async def list_currencies(currency_service: CurrencyService = Depends(get_currency_service)):
    """Supported currency codes"""
    return currency_service.get_supported_currencies()

@router.get("/{from_currency}/{to_currency}", response_model=RateQuote)
async def get_exchange_rate(
    from_currency: str,
    to_currency: str,
    refresh: bool = False,
    current_user_id: str = Depends(get_current_user_id),
    currency_service: CurrencyService = Depends(get_currency_service)
):
    """Current rate; ``refresh`` bypasses both cache tiers"""
    for code in (from_currency, to_currency):
        if not currency_service.is_valid_currency(code):
            raise LedgerValidationError(f"Invalid currency: {code}")
    return await currency_service.get_rate(from_currency, to_currency, force_refresh=refresh)
