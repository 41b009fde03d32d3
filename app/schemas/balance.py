from typing import List, Optional
from pydantic import BaseModel

from app.schemas.settlement import SettlementResponse


class UserBalance(BaseModel):
    """Derived per-user balance in one display currency. Never persisted."""
    user_id: str
    total_paid_cents: int
    total_owed_cents: int
    net_balance_cents: int
    currency: str
    display_amount: str


class DebtEdge(BaseModel):
    """Debtor owes creditor ``amount_cents``; ``source_id`` is the expense or settlement behind it."""
    from_user_id: str
    to_user_id: str
    amount_cents: int
    currency: str
    source_id: Optional[str] = None


class SimplifiedDebt(BaseModel):
    from_user_id: str
    to_user_id: str
    amount_cents: int
    currency: str
    display_amount: str = ""
    original_debts: List[str] = []


class GroupBalancesResponse(BaseModel):
    group_id: str
    group_name: str
    default_currency: str
    currency: str
    balances: List[UserBalance]
    total_group_expense_cents: int
    display_total_amount: str


class UserBalanceResponse(UserBalance):
    group_id: str
    settlements: List[SettlementResponse] = []


class DebtBreakdownResponse(BaseModel):
    group_id: str
    currency: str
    debts: List[DebtEdge] = []
    simplified_debts: List[SimplifiedDebt] = []
    total_debt_cents: int
    display_total_amount: str
