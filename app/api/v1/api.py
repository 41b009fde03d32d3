from fastapi import APIRouter
from app.api.v1.endpoints import balances, settlements, exchange_rates

api_router = APIRouter()

api_router.include_router(balances.router, prefix="/groups", tags=["balances"])
api_router.include_router(settlements.group_router, prefix="/groups", tags=["settlements"])
api_router.include_router(settlements.router, prefix="/settlements", tags=["settlements"])
api_router.include_router(exchange_rates.router, prefix="/exchange-rates", tags=["exchange-rates"])
