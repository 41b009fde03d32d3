from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_ledger_service
from app.core.auth import get_current_user_id
from app.schemas.balance import (
    DebtBreakdownResponse,
    GroupBalancesResponse,
    SimplifiedDebt,
    UserBalanceResponse,
)
from app.services.ledger_service import LedgerService

router = APIRouter()

@router.get("/{group_id}/balances", response_model=GroupBalancesResponse)
async def get_group_balances(
    group_id: str,
    currency: Optional[str] = None,
    current_user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Balances of every group member"""
    return await ledger.get_group_balances(group_id, currency, acting_user_id=current_user_id)

@router.get("/{group_id}/balances/{user_id}", response_model=UserBalanceResponse)
async def get_user_balance(
    group_id: str,
    user_id: str,
    currency: Optional[str] = None,
    current_user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Balance and settlements of one member"""
    return await ledger.get_user_balance(group_id, user_id, current_user_id, currency)

@router.get("/{group_id}/debts", response_model=DebtBreakdownResponse)
async def get_group_debts(
    group_id: str,
    currency: Optional[str] = None,
    simplify: bool = Query(False),
    current_user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Who owes whom, per pair or simplified"""
    return await ledger.get_group_debts(group_id, current_user_id, currency, simplified=simplify)

@router.get("/{group_id}/simplified-debts", response_model=List[SimplifiedDebt])
async def get_simplified_debts(
    group_id: str,
    currency: Optional[str] = None,
    current_user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Minimal set of payments that clears the group"""
    response = await ledger.get_group_debts(group_id, current_user_id, currency, simplified=True)
    return response.simplified_debts
