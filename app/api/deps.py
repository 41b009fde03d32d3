from fastapi import Depends, Request

from app.db.mongo import get_db
from app.db.session import get_uow_factory
from app.repositories.expense_repo import ExpenseRepository
from app.repositories.group_repo import GroupRepository
from app.repositories.settlement_repo import SettlementRepository
from app.services.currency_service import CurrencyService
from app.services.ledger_service import LedgerService
from app.services.settlement_service import SettlementService


def get_currency_service(request: Request) -> CurrencyService:
    """The process-wide service built at startup; it owns the in-process rate cache."""
    return request.app.state.currency_service


def get_ledger_service(
    db=Depends(get_db),
    currency_service: CurrencyService = Depends(get_currency_service),
    uow_factory=Depends(get_uow_factory),
) -> LedgerService:
    return LedgerService(
        GroupRepository(db),
        ExpenseRepository(db),
        SettlementRepository(db),
        currency_service,
        uow_factory,
    )


def get_settlement_service(
    db=Depends(get_db),
    currency_service: CurrencyService = Depends(get_currency_service),
    uow_factory=Depends(get_uow_factory),
) -> SettlementService:
    return SettlementService(
        GroupRepository(db),
        ExpenseRepository(db),
        SettlementRepository(db),
        currency_service,
        uow_factory,
    )
