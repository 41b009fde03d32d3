from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_currency_service, get_settlement_service
from app.core.auth import get_current_user_id
from app.core.config import settings
from app.models.settlement import SettlementStatus
from app.schemas.settlement import (
    PartialSettlementCreate,
    SettlementCreate,
    SettlementHistoryResponse,
    SettlementListResponse,
    SettlementResponse,
    SettlementUpdate,
)
from app.services.currency_service import CurrencyService
from app.services.settlement_service import SettlementService, settlement_to_response

# Mounted under /groups
group_router = APIRouter()
# Mounted under /settlements
router = APIRouter()

@group_router.post("/{group_id}/settlements", response_model=SettlementResponse, status_code=201)
async def create_settlement(
    group_id: str,
    settlement_in: SettlementCreate,
    current_user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service),
    currency_service: CurrencyService = Depends(get_currency_service)
):
    """Record a payment between two members"""
    settlement = await service.create_settlement(group_id, current_user_id, settlement_in)
    return settlement_to_response(settlement, currency_service)

@group_router.post("/{group_id}/partial-settlements", response_model=SettlementResponse, status_code=201)
async def create_partial_settlement(
    group_id: str,
    settlement_in: PartialSettlementCreate,
    current_user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service),
    currency_service: CurrencyService = Depends(get_currency_service)
):
    """Settle part of one expense share"""
    settlement = await service.create_partial_settlement(group_id, current_user_id, settlement_in)
    return settlement_to_response(settlement, currency_service)

@group_router.get("/{group_id}/settlements", response_model=SettlementListResponse)
async def list_group_settlements(
    group_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.SETTLEMENT_PAGE_LIMIT, ge=1, le=100),
    status: Optional[SettlementStatus] = None,
    current_user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service)
):
    """Settlements of a group, newest first"""
    return await service.list_group_settlements(group_id, current_user_id, page, limit, status)

@router.get("/{settlement_id}", response_model=SettlementResponse)
async def get_settlement(
    settlement_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service),
    currency_service: CurrencyService = Depends(get_currency_service)
):
    settlement = await service.get_settlement(settlement_id, current_user_id)
    return settlement_to_response(settlement, currency_service)

@router.put("/{settlement_id}", response_model=SettlementResponse)
async def update_settlement(
    settlement_id: str,
    settlement_in: SettlementUpdate,
    current_user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service),
    currency_service: CurrencyService = Depends(get_currency_service)
):
    """Change amount, currency or notes of a pending settlement"""
    settlement = await service.update_settlement(settlement_id, current_user_id, settlement_in)
    return settlement_to_response(settlement, currency_service)

@router.post("/{settlement_id}/complete", response_model=SettlementResponse)
async def complete_settlement(
    settlement_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service),
    currency_service: CurrencyService = Depends(get_currency_service)
):
    settlement = await service.complete_settlement(settlement_id, current_user_id)
    return settlement_to_response(settlement, currency_service)

@router.post("/{settlement_id}/cancel", response_model=SettlementResponse)
async def cancel_settlement(
    settlement_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service),
    currency_service: CurrencyService = Depends(get_currency_service)
):
    settlement = await service.cancel_settlement(settlement_id, current_user_id)
    return settlement_to_response(settlement, currency_service)

@router.delete("/{settlement_id}")
async def delete_settlement(
    settlement_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service)
):
    """Delete a pending settlement"""
    await service.delete_settlement(settlement_id, current_user_id)
    return {"message": "Settlement deleted successfully"}

@router.get("/{settlement_id}/history", response_model=List[SettlementHistoryResponse])
async def get_settlement_history(
    settlement_id: str,
    current_user_id: str = Depends(get_current_user_id),
    service: SettlementService = Depends(get_settlement_service)
):
    history = await service.get_settlement_history(settlement_id, current_user_id)
    return [entry.model_dump() for entry in history]
