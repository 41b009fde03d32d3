"""
Currency conversion for the ledger.

Rate lookup order:
1. in-process cache (unexpired)
2. persisted cache (unexpired)
3. provider, bounded by a timeout
4. last-known rate from either cache tier, flagged ``is_fallback``
5. ConversionError

Different currencies are never converted 1:1 by default.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import requests

from app.core.exceptions import ConversionError
from app.schemas.exchange_rate import Conversion, CurrencyInfo, RateQuote
from app.services.rate_cache import RateCache
from app.utils.money import apply_rate

logger = logging.getLogger(__name__)


CURRENCIES: Dict[str, CurrencyInfo] = {
    c.code: c for c in [
        CurrencyInfo(code="USD", name="US Dollar", symbol="$", precision=2),
        CurrencyInfo(code="EUR", name="Euro", symbol="€", precision=2),
        CurrencyInfo(code="GBP", name="British Pound", symbol="£", precision=2),
        CurrencyInfo(code="JPY", name="Japanese Yen", symbol="¥", precision=0),
        CurrencyInfo(code="CAD", name="Canadian Dollar", symbol="C$", precision=2),
        CurrencyInfo(code="AUD", name="Australian Dollar", symbol="A$", precision=2),
        CurrencyInfo(code="CHF", name="Swiss Franc", symbol="CHF", precision=2),
        CurrencyInfo(code="CNY", name="Chinese Yuan", symbol="¥", precision=2),
        CurrencyInfo(code="INR", name="Indian Rupee", symbol="₹", precision=2),
        CurrencyInfo(code="BRL", name="Brazilian Real", symbol="R$", precision=2),
        CurrencyInfo(code="MXN", name="Mexican Peso", symbol="$", precision=2),
        CurrencyInfo(code="KRW", name="South Korean Won", symbol="₩", precision=0),
        CurrencyInfo(code="SGD", name="Singapore Dollar", symbol="S$", precision=2),
        CurrencyInfo(code="HKD", name="Hong Kong Dollar", symbol="HK$", precision=2),
        CurrencyInfo(code="NZD", name="New Zealand Dollar", symbol="NZ$", precision=2),
        CurrencyInfo(code="SEK", name="Swedish Krona", symbol="kr", precision=2),
        CurrencyInfo(code="NOK", name="Norwegian Krone", symbol="kr", precision=2),
        CurrencyInfo(code="DKK", name="Danish Krone", symbol="kr", precision=2),
        CurrencyInfo(code="PLN", name="Polish Zloty", symbol="zł", precision=2),
        CurrencyInfo(code="CZK", name="Czech Koruna", symbol="Kč", precision=2),
        CurrencyInfo(code="HUF", name="Hungarian Forint", symbol="Ft", precision=0),
        CurrencyInfo(code="TRY", name="Turkish Lira", symbol="₺", precision=2),
        CurrencyInfo(code="ZAR", name="South African Rand", symbol="R", precision=2),
        CurrencyInfo(code="THB", name="Thai Baht", symbol="฿", precision=2),
        CurrencyInfo(code="MYR", name="Malaysian Ringgit", symbol="RM", precision=2),
        CurrencyInfo(code="IDR", name="Indonesian Rupiah", symbol="Rp", precision=0),
        CurrencyInfo(code="PHP", name="Philippine Peso", symbol="₱", precision=2),
        CurrencyInfo(code="VND", name="Vietnamese Dong", symbol="₫", precision=0),
        CurrencyInfo(code="AED", name="UAE Dirham", symbol="د.إ", precision=2),
        CurrencyInfo(code="SAR", name="Saudi Riyal", symbol="﷼", precision=2),
        CurrencyInfo(code="KWD", name="Kuwaiti Dinar", symbol="د.ك", precision=3),
        CurrencyInfo(code="BHD", name="Bahraini Dinar", symbol=".د.ب", precision=3),
        CurrencyInfo(code="ILS", name="Israeli Shekel", symbol="₪", precision=2),
        CurrencyInfo(code="EGP", name="Egyptian Pound", symbol="E£", precision=2),
        CurrencyInfo(code="NGN", name="Nigerian Naira", symbol="₦", precision=2),
        CurrencyInfo(code="KES", name="Kenyan Shilling", symbol="KSh", precision=2),
        CurrencyInfo(code="PKR", name="Pakistani Rupee", symbol="₨", precision=2),
        CurrencyInfo(code="BDT", name="Bangladeshi Taka", symbol="৳", precision=2),
        CurrencyInfo(code="ARS", name="Argentine Peso", symbol="$", precision=2),
        CurrencyInfo(code="CLP", name="Chilean Peso", symbol="$", precision=0),
        CurrencyInfo(code="COP", name="Colombian Peso", symbol="$", precision=0),
        CurrencyInfo(code="PEN", name="Peruvian Sol", symbol="S/", precision=2),
    ]
}


def is_valid_currency(code: Optional[str]) -> bool:
    return bool(code) and code.upper() in CURRENCIES


def get_currency_info(code: str) -> Optional[CurrencyInfo]:
    return CURRENCIES.get(code.upper())


def format_amount(amount_cents: int, code: str) -> str:
    """Render cents with the currency symbol at the currency's precision.

    Stored amounts are hundredths for every currency; ``precision`` only
    sets how many decimals are shown, so KWD and BHD end in a zero.
    """
    amount = amount_cents / 100
    info = get_currency_info(code)
    if info is None:
        return f"{amount:.2f} {code}"
    sign = "-" if amount < 0 else ""
    return f"{sign}{info.symbol}{abs(amount):,.{info.precision}f}"


class StaticRateProvider:
    """Fixed rates against USD; useful for development and tests."""

    BASE_RATES: Dict[str, float] = {
        "USD": 1.0, "EUR": 0.85, "GBP": 0.73, "JPY": 110.0, "CAD": 1.25,
        "AUD": 1.35, "CHF": 0.92, "CNY": 6.45, "INR": 74.5, "BRL": 5.2,
        "MXN": 20.1, "SGD": 1.35, "HKD": 7.75, "NZD": 1.42, "SEK": 8.5,
        "NOK": 8.8, "DKK": 6.2, "PLN": 3.8, "CZK": 21.5, "HUF": 300.0,
    }

    def __init__(self, base_rates: Optional[Dict[str, float]] = None):
        self.base_rates = base_rates or self.BASE_RATES

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        try:
            return self.base_rates[to_currency] / self.base_rates[from_currency]
        except KeyError:
            raise ConversionError(f"No rate available for {from_currency} to {to_currency}")


class HttpRateProvider:
    """Fixer-style ``/latest?base=&symbols=`` JSON API."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _fetch_sync(self, from_currency: str, to_currency: str) -> float:
        response = requests.get(
            f"{self.base_url}/latest",
            params={"access_key": self.api_key, "base": from_currency, "symbols": to_currency},
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()
        if payload.get("success") is False:
            raise ConversionError(f"Rate API error: {payload.get('error')}")
        try:
            return float(payload["rates"][to_currency])
        except (KeyError, TypeError, ValueError):
            raise ConversionError(f"Rate API returned no rate for {from_currency} to {to_currency}")

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        return await asyncio.to_thread(self._fetch_sync, from_currency, to_currency)


class CurrencyService:
    def __init__(self, cache: RateCache, provider, fetch_timeout: float = 5.0):
        self.cache = cache
        self.provider = provider
        self.fetch_timeout = fetch_timeout

    is_valid_currency = staticmethod(is_valid_currency)
    format_amount = staticmethod(format_amount)
    get_currency_info = staticmethod(get_currency_info)

    def get_supported_currencies(self) -> List[CurrencyInfo]:
        return list(CURRENCIES.values())

    async def get_rate(self, from_currency: str, to_currency: str, force_refresh: bool = False) -> RateQuote:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        if from_currency == to_currency:
            now = datetime.now(timezone.utc)
            return RateQuote(
                from_currency=from_currency,
                to_currency=to_currency,
                rate=1.0,
                fetched_at=now,
                expires_at=now + timedelta(hours=24),
            )

        if not force_refresh:
            cached = await self.cache.get_fresh(from_currency, to_currency)
            if cached is not None:
                return cached

        try:
            rate = await asyncio.wait_for(
                self.provider.fetch_rate(from_currency, to_currency),
                timeout=self.fetch_timeout,
            )
        except (asyncio.TimeoutError, requests.RequestException, ConversionError, ValueError) as e:
            logger.warning("Rate fetch %s->%s failed: %s", from_currency, to_currency, e)
            fallback = await self.cache.get_last_known(from_currency, to_currency)
            if fallback is None:
                raise ConversionError(
                    f"Failed to get exchange rate for {from_currency} to {to_currency}"
                ) from e
            logger.info("Using last known rate for %s->%s: %s", from_currency, to_currency, fallback.rate)
            return fallback.model_copy(update={"is_fallback": True})

        if rate <= 0:
            raise ConversionError(f"Invalid rate {rate} for {from_currency} to {to_currency}")
        logger.debug("Fetched rate %s->%s: %s", from_currency, to_currency, rate)
        return await self.cache.store(from_currency, to_currency, rate)

    async def convert(self, amount_cents: int, from_currency: str, to_currency: str) -> Conversion:
        quote = await self.get_rate(from_currency, to_currency)
        return Conversion(converted_amount_cents=apply_rate(amount_cents, quote.rate), rate=quote.rate)

    async def clear_expired_rates(self) -> int:
        return await self.cache.clear_expired()
