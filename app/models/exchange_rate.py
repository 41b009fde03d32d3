from datetime import datetime, timezone

from pydantic import BaseModel, Field


class ExchangeRate(BaseModel):
    """Persisted rate for one currency pair. Expired rows double as the last-known rate."""
    from_currency: str
    to_currency: str
    rate: float = Field(gt=0)
    fetched_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        # Mongo hands back naive UTC datetimes
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at
