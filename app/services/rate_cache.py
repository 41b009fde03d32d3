"""
Two-tier exchange-rate cache.

Tier one is an in-process LRU map with per-entry expiry; tier two is the
``exchange_rates`` collection. Both tiers keep expired entries around
(until evicted or pruned) so a last-known rate is available when the
provider cannot be reached.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from pymongo.errors import PyMongoError

from app.models.exchange_rate import ExchangeRate
from app.repositories.exchange_rate_repo import ExchangeRateRepository
from app.schemas.exchange_rate import RateQuote

logger = logging.getLogger(__name__)

PairKey = Tuple[str, str]


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class MemoryRateCache:
    """Bounded LRU map of currency pair -> RateQuote."""

    def __init__(self, max_entries: int = 512):
        self.max_entries = max_entries
        self._entries: "OrderedDict[PairKey, RateQuote]" = OrderedDict()

    def get(self, key: PairKey, now: Optional[datetime] = None) -> Optional[RateQuote]:
        """Unexpired entry, or None."""
        quote = self._entries.get(key)
        if quote is None:
            return None
        now = now or datetime.now(timezone.utc)
        if now >= _aware(quote.expires_at):
            return None
        self._entries.move_to_end(key)
        return quote

    def get_stale(self, key: PairKey) -> Optional[RateQuote]:
        """Entry regardless of expiry."""
        return self._entries.get(key)

    def set(self, key: PairKey, quote: RateQuote) -> None:
        self._entries[key] = quote
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        expired = [k for k, q in self._entries.items() if now >= _aware(q.expires_at)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RateCache:
    def __init__(self, repository: ExchangeRateRepository, memory: MemoryRateCache, ttl_seconds: int = 3600):
        self.repository = repository
        self.memory = memory
        self.ttl = timedelta(seconds=ttl_seconds)

    async def get_fresh(self, from_currency: str, to_currency: str) -> Optional[RateQuote]:
        key = (from_currency, to_currency)
        quote = self.memory.get(key)
        if quote is not None:
            return quote

        stored = await self.repository.get(from_currency, to_currency)
        if stored is None or stored.is_expired():
            return None
        quote = RateQuote(**stored.model_dump())
        self.memory.set(key, quote)
        return quote

    async def get_last_known(self, from_currency: str, to_currency: str) -> Optional[RateQuote]:
        """Most recent rate for the pair from either tier, ignoring expiry."""
        quote = self.memory.get_stale((from_currency, to_currency))
        if quote is not None:
            return quote
        stored = await self.repository.get(from_currency, to_currency)
        if stored is not None:
            return RateQuote(**stored.model_dump())
        return None

    async def store(self, from_currency: str, to_currency: str, rate: float) -> RateQuote:
        now = datetime.now(timezone.utc)
        quote = RateQuote(
            from_currency=from_currency,
            to_currency=to_currency,
            rate=rate,
            fetched_at=now,
            expires_at=now + self.ttl,
        )
        self.memory.set((from_currency, to_currency), quote)
        try:
            await self.repository.upsert(ExchangeRate(**quote.model_dump(exclude={"is_fallback"})))
        except PyMongoError as e:
            # The in-process tier still holds the rate
            logger.warning("Failed to persist rate %s->%s: %s", from_currency, to_currency, e)
        return quote

    async def clear_expired(self) -> int:
        self.memory.prune_expired()
        return await self.repository.delete_expired()
