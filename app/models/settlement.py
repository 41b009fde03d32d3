"""
Settlement model - a recorded payment from a debtor to a creditor.

Lifecycle: PENDING -> COMPLETED | CANCELLED. Both terminal states are
immutable. Only COMPLETED settlements count towards balances.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from app.models.base import MongoModel, IdStr


class SettlementStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class SettlementType(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


class SettlementAction(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (SettlementStatus.COMPLETED, SettlementStatus.CANCELLED)


class Settlement(MongoModel):
    group_id: IdStr
    from_user_id: IdStr  # debtor
    to_user_id: IdStr    # creditor
    amount_cents: int
    currency: str

    # Set when currency differs from the group default
    exchange_rate: Optional[float] = None
    original_currency: Optional[str] = None
    converted_amount_cents: Optional[int] = None

    notes: Optional[str] = None
    status: SettlementStatus = SettlementStatus.PENDING
    settlement_type: SettlementType = SettlementType.FULL

    # PARTIAL only: the share this settlement reduces
    original_split_id: Optional[IdStr] = None
    partial_amount_cents: Optional[int] = None

    created_by: Optional[IdStr] = None
    settled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    def is_pending(self) -> bool:
        return self.status == SettlementStatus.PENDING

    def involves(self, user_id: str) -> bool:
        return user_id in (self.from_user_id, self.to_user_id)

    def holds_reservation(self) -> bool:
        """A PARTIAL settlement still reserving part of its expense share."""
        return (
            self.settlement_type == SettlementType.PARTIAL
            and self.original_split_id is not None
            and bool(self.partial_amount_cents)
        )


class SettlementHistory(MongoModel):
    settlement_id: IdStr
    action: SettlementAction
    actor_id: IdStr
    amount_cents: int
    currency: str
    notes: Optional[str] = None
