from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from app.models.settlement import SettlementStatus, SettlementType, SettlementAction


class SettlementCreate(BaseModel):
    from_user_id: str
    to_user_id: str
    amount_cents: int
    currency: Optional[str] = None  # defaults to the group currency
    exchange_rate_override: Optional[float] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    settlement_type: SettlementType = SettlementType.FULL
    original_split_id: Optional[str] = None
    partial_amount_cents: Optional[int] = None


class PartialSettlementCreate(SettlementCreate):
    settlement_type: SettlementType = SettlementType.PARTIAL
    original_split_id: str
    partial_amount_cents: int


class SettlementUpdate(BaseModel):
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    exchange_rate_override: Optional[float] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _not_empty(self) -> "SettlementUpdate":
        if self.amount_cents is None and self.currency is None and self.notes is None \
                and self.exchange_rate_override is None:
            raise ValueError("Nothing to update")
        return self


class SettlementResponse(BaseModel):
    id: str
    group_id: str
    from_user_id: str
    to_user_id: str
    amount_cents: int
    currency: str
    exchange_rate: Optional[float] = None
    original_currency: Optional[str] = None
    converted_amount_cents: Optional[int] = None
    notes: Optional[str] = None
    status: SettlementStatus
    settlement_type: SettlementType
    original_split_id: Optional[str] = None
    partial_amount_cents: Optional[int] = None
    display_amount: str = ""
    settled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class SettlementListResponse(BaseModel):
    settlements: List[SettlementResponse]
    pagination: Pagination


class SettlementHistoryResponse(BaseModel):
    id: str
    settlement_id: str
    action: SettlementAction
    actor_id: str
    amount_cents: int
    currency: str
    notes: Optional[str] = None
    created_at: datetime
