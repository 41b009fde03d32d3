"""
SettlementService - settlement lifecycle.

State machine: PENDING -> COMPLETED | CANCELLED, nothing leaves a terminal
state. Every write runs in one unit of work together with its history
entry, and every status change is a compare-and-swap on PENDING so a
settlement is completed or cancelled at most once.

PARTIAL settlements reserve part of an expense share when they are
created. Cancelling or deleting the settlement releases the reservation;
completing it keeps it.

Each write registers its undo with ``uow.on_rollback`` so the same
guarantees hold when MongoDB transactions are switched off.
"""

import logging
import math
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, List, Optional

from app.core.exceptions import (
    InvalidStateTransition,
    LedgerValidationError,
    NotFoundError,
    PermissionDeniedError,
)
from app.db.session import UnitOfWorkFactory
from app.models.group import Group
from app.models.settlement import (
    Settlement,
    SettlementAction,
    SettlementHistory,
    SettlementStatus,
    SettlementType,
)
from app.repositories.expense_repo import ExpenseRepository
from app.repositories.group_repo import GroupRepository
from app.repositories.settlement_repo import SettlementRepository
from app.schemas.settlement import (
    Pagination,
    SettlementCreate,
    SettlementListResponse,
    SettlementResponse,
    SettlementUpdate,
)
from app.services.currency_service import CurrencyService
from app.utils.money import apply_rate

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100


def settlement_to_response(settlement: Settlement, currency_service: CurrencyService) -> SettlementResponse:
    return SettlementResponse(
        **settlement.model_dump(),
        display_amount=currency_service.format_amount(settlement.amount_cents, settlement.currency),
    )


class SettlementService:
    def __init__(
        self,
        group_repo: GroupRepository,
        expense_repo: ExpenseRepository,
        settlement_repo: SettlementRepository,
        currency_service: CurrencyService,
        uow_factory: UnitOfWorkFactory,
    ):
        self.group_repo = group_repo
        self.expense_repo = expense_repo
        self.settlement_repo = settlement_repo
        self.currency_service = currency_service
        self.uow_factory = uow_factory

    async def create_settlement(self, group_id: str, acting_user_id: str, data: SettlementCreate) -> Settlement:
        group = await self._get_group(group_id)

        if not group.has_member(acting_user_id):
            raise PermissionDeniedError("You are not a member of this group")
        if acting_user_id not in (data.from_user_id, data.to_user_id):
            raise PermissionDeniedError("You can only create settlements involving yourself")
        if not group.has_member(data.from_user_id) or not group.has_member(data.to_user_id):
            raise LedgerValidationError("One or both users are not members of this group")
        if data.from_user_id == data.to_user_id:
            raise LedgerValidationError("Cannot create settlement between the same user")
        if data.amount_cents <= 0:
            raise LedgerValidationError("Settlement amount must be greater than 0")

        currency = self._check_currency(data.currency or group.default_currency)

        # Rate lookup happens before anything is written
        conversion = await self._conversion_fields(
            data.amount_cents, currency, group.default_currency, data.exchange_rate_override
        )

        share = None
        if data.settlement_type == SettlementType.PARTIAL:
            share = await self._check_partial(group, data, currency)

        settlement = Settlement(
            group_id=group.id,
            from_user_id=data.from_user_id,
            to_user_id=data.to_user_id,
            amount_cents=data.amount_cents,
            currency=currency,
            notes=data.notes,
            status=SettlementStatus.PENDING,
            settlement_type=data.settlement_type,
            original_split_id=share.id if share else None,
            partial_amount_cents=data.partial_amount_cents if share else None,
            created_by=acting_user_id,
            **conversion,
        )

        async with self.uow_factory() as uow:
            if share is not None:
                reserved = await self.expense_repo.reserve_share_amount(
                    share.id, data.partial_amount_cents, session=uow.session
                )
                if reserved is None:
                    logger.warning(
                        "Rejected partial settlement of %s on share %s: exceeds unsettled amount",
                        data.partial_amount_cents, share.id,
                    )
                    raise LedgerValidationError("Partial amount exceeds remaining unsettled amount")
                uow.on_rollback(partial(
                    self.expense_repo.release_share_amount,
                    share.id, data.partial_amount_cents, session=uow.session,
                ))
            await self.settlement_repo.insert(settlement, session=uow.session)
            uow.on_rollback(partial(self.settlement_repo.delete_pending, settlement.id, session=uow.session))
            await self._record(settlement, SettlementAction.CREATED, acting_user_id, uow.session)

        logger.info(
            "Settlement %s created in group %s: %s -> %s %s %s (%s)",
            settlement.id, group.id, settlement.from_user_id, settlement.to_user_id,
            settlement.amount_cents, settlement.currency, settlement.settlement_type,
        )
        return settlement

    async def create_partial_settlement(self, group_id: str, acting_user_id: str, data: SettlementCreate) -> Settlement:
        if not data.partial_amount_cents or not data.original_split_id:
            raise LedgerValidationError("Partial settlements require partial_amount_cents and original_split_id")
        data = data.model_copy(update={"settlement_type": SettlementType.PARTIAL})
        return await self.create_settlement(group_id, acting_user_id, data)

    async def get_settlement(self, settlement_id: str, acting_user_id: str) -> Settlement:
        settlement = await self._get_settlement(settlement_id)
        if not await self.group_repo.is_member(settlement.group_id, acting_user_id):
            raise PermissionDeniedError("You are not a member of this group")
        return settlement

    async def list_group_settlements(
        self,
        group_id: str,
        acting_user_id: str,
        page: int = 1,
        limit: int = 20,
        status: Optional[SettlementStatus] = None,
    ) -> SettlementListResponse:
        group = await self._get_group(group_id)
        if not group.has_member(acting_user_id):
            raise PermissionDeniedError("You are not a member of this group")
        if page < 1 or limit < 1 or limit > MAX_PAGE_LIMIT:
            raise LedgerValidationError(f"page must be >= 1 and limit between 1 and {MAX_PAGE_LIMIT}")

        settlements, total = await self.settlement_repo.list_by_group(group_id, page, limit, status)
        return SettlementListResponse(
            settlements=[settlement_to_response(s, self.currency_service) for s in settlements],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
        )

    async def update_settlement(self, settlement_id: str, acting_user_id: str, data: SettlementUpdate) -> Settlement:
        settlement = await self._get_party_settlement(settlement_id, acting_user_id)
        self._require_pending(settlement)
        group = await self._get_group(settlement.group_id)

        fields: Dict[str, Any] = {}
        if data.notes is not None:
            fields["notes"] = data.notes

        amount = data.amount_cents if data.amount_cents is not None else settlement.amount_cents
        if amount <= 0:
            raise LedgerValidationError("Settlement amount must be greater than 0")
        currency = self._check_currency(data.currency) if data.currency else settlement.currency
        if settlement.holds_reservation():
            share = await self.expense_repo.get_share(settlement.original_split_id)
            if share is not None and share.currency == currency and amount < settlement.partial_amount_cents:
                raise LedgerValidationError("Partial amount cannot exceed the settlement amount")

        if amount != settlement.amount_cents or currency != settlement.currency \
                or data.exchange_rate_override is not None:
            fields["amount_cents"] = amount
            fields["currency"] = currency
            fields.update(await self._conversion_fields(
                amount, currency, group.default_currency, data.exchange_rate_override
            ))

        async with self.uow_factory() as uow:
            updated = await self.settlement_repo.update_pending(settlement.id, fields, session=uow.session)
            if updated is None:
                raise await self._transition_error(settlement.id)
            uow.on_rollback(partial(self.settlement_repo.restore, settlement, session=uow.session))
            await self._record(updated, SettlementAction.UPDATED, acting_user_id, uow.session)

        logger.info("Settlement %s updated by %s", settlement.id, acting_user_id)
        return updated

    async def complete_settlement(self, settlement_id: str, acting_user_id: str) -> Settlement:
        return await self._transition(
            settlement_id,
            acting_user_id,
            SettlementAction.COMPLETED,
            {"status": SettlementStatus.COMPLETED.value, "settled_at": datetime.now(timezone.utc)},
            release_reservation=False,
        )

    async def cancel_settlement(self, settlement_id: str, acting_user_id: str) -> Settlement:
        return await self._transition(
            settlement_id,
            acting_user_id,
            SettlementAction.CANCELLED,
            {"status": SettlementStatus.CANCELLED.value, "cancelled_at": datetime.now(timezone.utc)},
            release_reservation=True,
        )

    async def delete_settlement(self, settlement_id: str, acting_user_id: str) -> None:
        settlement = await self._get_party_settlement(settlement_id, acting_user_id)
        if not settlement.is_pending():
            raise InvalidStateTransition("Cannot delete completed or cancelled settlements")

        async with self.uow_factory() as uow:
            if not await self.settlement_repo.delete_pending(settlement.id, session=uow.session):
                raise await self._transition_error(settlement.id)
            uow.on_rollback(partial(self.settlement_repo.restore, settlement, session=uow.session))
            await self._release(settlement, uow)

        logger.info("Settlement %s deleted by %s", settlement.id, acting_user_id)

    async def get_settlement_history(self, settlement_id: str, acting_user_id: str) -> List[SettlementHistory]:
        settlement = await self._get_party_settlement(settlement_id, acting_user_id)
        return await self.settlement_repo.list_history(settlement.id)

    # ===== PRIVATE HELPERS =====

    async def _transition(
        self,
        settlement_id: str,
        acting_user_id: str,
        action: SettlementAction,
        fields: Dict[str, Any],
        release_reservation: bool,
    ) -> Settlement:
        settlement = await self._get_party_settlement(settlement_id, acting_user_id)
        self._require_pending(settlement)

        async with self.uow_factory() as uow:
            # The status compare-and-swap decides who wins a concurrent transition
            updated = await self.settlement_repo.update_pending(settlement.id, fields, session=uow.session)
            if updated is None:
                raise await self._transition_error(settlement.id)
            uow.on_rollback(partial(self.settlement_repo.restore, settlement, session=uow.session))
            if release_reservation:
                await self._release(updated, uow)
            await self._record(updated, action, acting_user_id, uow.session)

        logger.info("Settlement %s %s by %s", settlement.id, updated.status, acting_user_id)
        return updated

    async def _release(self, settlement: Settlement, uow) -> None:
        if not settlement.holds_reservation():
            return
        released = await self.expense_repo.release_share_amount(
            settlement.original_split_id, settlement.partial_amount_cents, session=uow.session
        )
        if released is None:
            raise LedgerValidationError(
                f"Could not release {settlement.partial_amount_cents} from share {settlement.original_split_id}"
            )
        uow.on_rollback(partial(
            self.expense_repo.reserve_share_amount,
            settlement.original_split_id, settlement.partial_amount_cents, session=uow.session,
        ))

    async def _record(self, settlement: Settlement, action: SettlementAction, actor_id: str, session) -> None:
        await self.settlement_repo.add_history(
            SettlementHistory(
                settlement_id=settlement.id,
                action=action,
                actor_id=actor_id,
                amount_cents=settlement.amount_cents,
                currency=settlement.currency,
                notes=settlement.notes,
            ),
            session=session,
        )

    async def _check_partial(self, group: Group, data: SettlementCreate, currency: str):
        if not data.original_split_id or not data.partial_amount_cents:
            raise LedgerValidationError("Partial settlements require partial_amount_cents and original_split_id")
        if data.partial_amount_cents <= 0:
            raise LedgerValidationError("Partial amount must be greater than 0")

        share = await self.expense_repo.get_share(data.original_split_id)
        if share is None or share.group_id != group.id:
            raise NotFoundError("Original split not found or does not belong to this group")
        if share.user_id != data.from_user_id:
            raise LedgerValidationError("Only the user who owes a share can settle it")
        if share.currency == currency and data.partial_amount_cents > data.amount_cents:
            raise LedgerValidationError("Partial amount cannot exceed the settlement amount")
        if data.partial_amount_cents > share.open_amount_cents():
            raise LedgerValidationError("Partial amount exceeds remaining unsettled amount")
        return share

    async def _conversion_fields(
        self,
        amount_cents: int,
        currency: str,
        default_currency: str,
        rate_override: Optional[float],
    ) -> Dict[str, Any]:
        if currency == default_currency:
            return {"exchange_rate": None, "original_currency": None, "converted_amount_cents": None}

        if rate_override:
            rate = rate_override
        else:
            rate = (await self.currency_service.get_rate(currency, default_currency)).rate
        return {
            "exchange_rate": rate,
            "original_currency": currency,
            "converted_amount_cents": apply_rate(amount_cents, rate),
        }

    def _check_currency(self, currency: str) -> str:
        if not self.currency_service.is_valid_currency(currency):
            raise LedgerValidationError(f"Invalid currency: {currency}")
        return currency.upper()

    @staticmethod
    def _require_pending(settlement: Settlement) -> None:
        if not settlement.is_pending():
            raise InvalidStateTransition(f"Settlement is already {settlement.status}")

    async def _transition_error(self, settlement_id: str) -> Exception:
        """Explain why a PENDING-guarded write matched nothing."""
        current = await self.settlement_repo.get(settlement_id)
        if current is None:
            return NotFoundError("Settlement not found")
        return InvalidStateTransition(f"Settlement is already {current.status}")

    async def _get_group(self, group_id: str) -> Group:
        group = await self.group_repo.get_group(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        return group

    async def _get_settlement(self, settlement_id: str) -> Settlement:
        settlement = await self.settlement_repo.get(settlement_id)
        if settlement is None:
            raise NotFoundError("Settlement not found")
        return settlement

    async def _get_party_settlement(self, settlement_id: str, acting_user_id: str) -> Settlement:
        settlement = await self._get_settlement(settlement_id)
        if not settlement.involves(acting_user_id):
            raise PermissionDeniedError("You can only modify settlements involving yourself")
        return settlement
