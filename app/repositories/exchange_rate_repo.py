from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.exchange_rate import ExchangeRate


class ExchangeRateRepository:
    """Persisted tier of the exchange-rate cache."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["exchange_rates"]

    async def get(self, from_currency: str, to_currency: str) -> Optional[ExchangeRate]:
        """Stored rate for the pair, expired or not."""
        doc = await self.collection.find_one({
            "from_currency": from_currency,
            "to_currency": to_currency,
        })
        if doc:
            return ExchangeRate(**doc)
        return None

    async def upsert(self, rate: ExchangeRate) -> None:
        await self.collection.update_one(
            {"from_currency": rate.from_currency, "to_currency": rate.to_currency},
            {"$set": rate.model_dump()},
            upsert=True,
        )

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        result = await self.collection.delete_many({"expires_at": {"$lt": now}})
        return result.deleted_count
