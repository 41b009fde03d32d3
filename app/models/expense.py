"""
Expense models - read-only input to the ledger.

Design principles:
- Expenses, payments and split rules belong to the expense subsystem
- Shares live in their own collection so ``settled_amount_cents`` can be
  changed with a single-document compare-and-swap
- Split rules are explicit variants, each carrying only its own fields.
  They validate how an expense was split; the owed amounts the ledger
  reads are the materialised shares
- All amounts in integer cents
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.base import MongoModel, IdStr


class SplitType(str, Enum):
    EQUAL = "EQUAL"
    PERCENTAGE = "PERCENTAGE"
    AMOUNT = "AMOUNT"
    SHARES = "SHARES"


class EqualSplit(BaseModel):
    split_type: Literal["EQUAL"] = "EQUAL"


class PercentageSplit(BaseModel):
    split_type: Literal["PERCENTAGE"] = "PERCENTAGE"
    percentages: Dict[IdStr, float]

    @field_validator("percentages")
    @classmethod
    def _check_percentages(cls, value: Dict[str, float]) -> Dict[str, float]:
        if not value:
            raise ValueError("percentage split needs at least one participant")
        for user_id, pct in value.items():
            if pct < 0 or pct > 100:
                raise ValueError(f"percentage for {user_id} must be between 0 and 100")
        if abs(sum(value.values()) - 100) > 0.01:
            raise ValueError("percentages must add up to 100")
        return value


class AmountSplit(BaseModel):
    split_type: Literal["AMOUNT"] = "AMOUNT"
    amounts_cents: Dict[IdStr, int]

    @field_validator("amounts_cents")
    @classmethod
    def _check_amounts(cls, value: Dict[str, int]) -> Dict[str, int]:
        if not value:
            raise ValueError("amount split needs at least one participant")
        if any(amount < 0 for amount in value.values()):
            raise ValueError("split amounts must be non-negative")
        return value


class SharesSplit(BaseModel):
    split_type: Literal["SHARES"] = "SHARES"
    shares: Dict[IdStr, int]

    @field_validator("shares")
    @classmethod
    def _check_shares(cls, value: Dict[str, int]) -> Dict[str, int]:
        if not value:
            raise ValueError("shares split needs at least one participant")
        if any(count < 1 for count in value.values()):
            raise ValueError("each participant needs at least one share")
        return value


SplitRule = Annotated[
    Union[EqualSplit, PercentageSplit, AmountSplit, SharesSplit],
    Field(discriminator="split_type"),
]


class ExpensePayment(BaseModel):
    user_id: IdStr
    amount_cents: int = Field(ge=0)


class ExpenseShare(MongoModel):
    """
    One user's owed portion of an expense.

    Invariants:
    - 0 <= settled_amount_cents <= amount_cents
    - currency is the parent expense's currency
    """
    expense_id: IdStr
    group_id: IdStr
    user_id: IdStr
    amount_cents: int = Field(ge=0)
    currency: str
    settled_amount_cents: int = Field(default=0, ge=0)
    last_settlement_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _settled_within_owed(self) -> "ExpenseShare":
        if self.settled_amount_cents > self.amount_cents:
            raise ValueError("settled amount exceeds owed amount")
        return self

    def open_amount_cents(self) -> int:
        """How much remains unsettled."""
        return self.amount_cents - self.settled_amount_cents


class Expense(MongoModel):
    group_id: IdStr
    description: str = ""
    amount_cents: int = Field(ge=0)
    currency: str
    is_archived: bool = False
    split: SplitRule = Field(default_factory=EqualSplit)
    payments: List[ExpensePayment] = []
    # Loaded from the expense_shares collection, never stored on the expense
    shares: List[ExpenseShare] = Field(default=[], exclude=True)
    exchange_rate: Optional[float] = None

    @model_validator(mode="after")
    def _amount_split_matches_total(self) -> "Expense":
        if isinstance(self.split, AmountSplit) \
                and abs(sum(self.split.amounts_cents.values()) - self.amount_cents) > 1:
            raise ValueError("split amounts do not add up to the expense amount")
        return self

    def is_balanced(self) -> bool:
        """Shares and payments both add up to the amount, within one cent."""
        owed = sum(s.amount_cents for s in self.shares)
        paid = sum(p.amount_cents for p in self.payments)
        return abs(owed - self.amount_cents) <= 1 and abs(paid - self.amount_cents) <= 1
