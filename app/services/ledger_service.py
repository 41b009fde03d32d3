"""
LedgerService - derives balances and debts from a group's expenses.

Core algorithm:
1. Read the group, its non-archived expenses and its COMPLETED
   settlements in one snapshot
2. Accumulate paid/owed per user per currency
3. Convert every currency bucket to the display currency
4. net = paid - owed

Nothing here is persisted; balances are recomputed on every read.
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from app.core.exceptions import NotFoundError, PermissionDeniedError, LedgerValidationError
from app.db.session import UnitOfWorkFactory
from app.models.expense import Expense
from app.models.group import Group
from app.models.settlement import Settlement
from app.repositories.expense_repo import ExpenseRepository
from app.repositories.group_repo import GroupRepository
from app.repositories.settlement_repo import SettlementRepository
from app.schemas.balance import (
    DebtBreakdownResponse,
    DebtEdge,
    GroupBalancesResponse,
    SimplifiedDebt,
    UserBalance,
    UserBalanceResponse,
)
from app.services.currency_service import CurrencyService
from app.services.debt_simplifier import aggregate_pairwise, simplify
from app.services.settlement_service import settlement_to_response
from app.utils.money import allocate_cents

logger = logging.getLogger(__name__)

# user_id -> currency -> [paid_cents, owed_cents]
Accumulator = Dict[str, Dict[str, List[int]]]


class LedgerService:
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

    # ===== BALANCES =====

    async def compute_group_balances(self, group_id: str, currency: Optional[str] = None) -> List[UserBalance]:
        """Per-user balances in one display currency, in group membership order."""
        group, expenses, settlements = await self._load_snapshot(group_id)
        target = self._target_currency(group, currency)
        return await self._fold_balances(group, expenses, settlements, target)

    async def get_group_balances(
        self,
        group_id: str,
        currency: Optional[str] = None,
        acting_user_id: Optional[str] = None,
    ) -> GroupBalancesResponse:
        group, expenses, settlements = await self._load_snapshot(group_id)
        if acting_user_id is not None and not group.has_member(acting_user_id):
            raise PermissionDeniedError("You are not a member of this group")

        target = self._target_currency(group, currency)
        balances = await self._fold_balances(group, expenses, settlements, target)

        total = 0
        for expense in expenses:
            total += await self._convert(expense.amount_cents, expense.currency, target)

        return GroupBalancesResponse(
            group_id=group.id,
            group_name=group.name,
            default_currency=group.default_currency,
            currency=target,
            balances=balances,
            total_group_expense_cents=total,
            display_total_amount=self.currency_service.format_amount(total, target),
        )

    async def get_user_balance(
        self,
        group_id: str,
        user_id: str,
        acting_user_id: str,
        currency: Optional[str] = None,
    ) -> UserBalanceResponse:
        group, expenses, settlements = await self._load_snapshot(group_id)
        if not group.has_member(acting_user_id):
            raise PermissionDeniedError("You are not a member of this group")

        target = self._target_currency(group, currency)
        balances = await self._fold_balances(group, expenses, settlements, target)
        balance = next((b for b in balances if b.user_id == user_id), None)
        if balance is None:
            raise NotFoundError("User not found in this group")

        user_settlements = await self.settlement_repo.list_for_user(group_id, user_id)
        return UserBalanceResponse(
            **balance.model_dump(),
            group_id=group.id,
            settlements=[settlement_to_response(s, self.currency_service) for s in user_settlements],
        )

    # ===== DEBTS =====

    async def get_pairwise_debts(self, group_id: str, currency: Optional[str] = None) -> List[DebtEdge]:
        """
        Every individual debt in the group, converted to one currency.

        Each share user owes each payer of the same expense in proportion to
        what that payer put in. A COMPLETED settlement adds the reverse edge
        (creditor -> debtor), cancelling what was paid back.
        """
        group, expenses, settlements = await self._load_snapshot(group_id)
        target = self._target_currency(group, currency)
        return await self._pairwise_debts(expenses, settlements, target)

    async def get_simplified_debts(self, group_id: str, currency: Optional[str] = None) -> List[SimplifiedDebt]:
        group, expenses, settlements = await self._load_snapshot(group_id)
        target = self._target_currency(group, currency)
        debts = await self._pairwise_debts(expenses, settlements, target)
        return simplify(debts, target, self.currency_service.format_amount)

    async def get_group_debts(
        self,
        group_id: str,
        acting_user_id: str,
        currency: Optional[str] = None,
        simplified: bool = False,
    ) -> DebtBreakdownResponse:
        group, expenses, settlements = await self._load_snapshot(group_id)
        if not group.has_member(acting_user_id):
            raise PermissionDeniedError("You are not a member of this group")

        target = self._target_currency(group, currency)
        fmt = self.currency_service.format_amount
        debts = await self._pairwise_debts(expenses, settlements, target)

        if simplified:
            simplified_debts = simplify(debts, target, fmt)
            total = sum(d.amount_cents for d in simplified_debts)
            return DebtBreakdownResponse(
                group_id=group.id,
                currency=target,
                simplified_debts=simplified_debts,
                total_debt_cents=total,
                display_total_amount=fmt(total, target),
            )

        pair_debts = aggregate_pairwise(debts)
        total = sum(d.amount_cents for d in pair_debts)
        return DebtBreakdownResponse(
            group_id=group.id,
            currency=target,
            debts=pair_debts,
            total_debt_cents=total,
            display_total_amount=fmt(total, target),
        )

    # ===== PRIVATE HELPERS =====

    async def _pairwise_debts(
        self,
        expenses: List[Expense],
        settlements: List[Settlement],
        target: str,
    ) -> List[DebtEdge]:
        edges = []
        for expense in expenses:
            for edge in self._expense_edges(expense):
                edges.append(await self._convert_edge(edge, target))
        for settlement in settlements:
            edge = DebtEdge(
                from_user_id=settlement.to_user_id,
                to_user_id=settlement.from_user_id,
                amount_cents=settlement.amount_cents,
                currency=settlement.currency,
                source_id=settlement.id,
            )
            edges.append(await self._convert_edge(edge, target))
        return edges

    async def _load_snapshot(self, group_id: str) -> Tuple[Group, List[Expense], List[Settlement]]:
        async with self.uow_factory(read_only=True) as uow:
            group = await self.group_repo.get_group(group_id, session=uow.session)
            if group is None:
                raise NotFoundError("Group not found")
            expenses = await self.expense_repo.list_active_expenses(group_id, session=uow.session)
            settlements = await self.settlement_repo.list_completed(group_id, session=uow.session)

        for expense in expenses:
            if not expense.is_balanced():
                logger.warning("Expense %s in group %s does not balance", expense.id, group_id)
        return group, expenses, settlements

    def _target_currency(self, group: Group, currency: Optional[str]) -> str:
        if currency:
            if not self.currency_service.is_valid_currency(currency):
                raise LedgerValidationError(f"Invalid currency: {currency}")
            return currency.upper()
        return group.preferred_currency or group.default_currency

    def _accumulate(self, group: Group, expenses: List[Expense], settlements: List[Settlement]) -> Accumulator:
        acc: Accumulator = OrderedDict((user_id, {}) for user_id in group.member_ids())

        def add(user_id: str, currency: str, paid: int = 0, owed: int = 0):
            # Former members still carry their history so the ledger stays closed
            bucket = acc.setdefault(user_id, {}).setdefault(currency, [0, 0])
            bucket[0] += paid
            bucket[1] += owed

        for expense in expenses:
            for payment in expense.payments:
                add(payment.user_id, expense.currency, paid=payment.amount_cents)
            for share in expense.shares:
                add(share.user_id, expense.currency, owed=share.amount_cents)

        # Paying a debt counts as paid for the debtor and owed for the creditor
        for settlement in settlements:
            add(settlement.from_user_id, settlement.currency, paid=settlement.amount_cents)
            add(settlement.to_user_id, settlement.currency, owed=settlement.amount_cents)
        return acc

    async def _fold_balances(
        self,
        group: Group,
        expenses: List[Expense],
        settlements: List[Settlement],
        target: str,
    ) -> List[UserBalance]:
        acc = self._accumulate(group, expenses, settlements)
        balances = []
        for user_id, by_currency in acc.items():
            total_paid = 0
            total_owed = 0
            for currency, (paid, owed) in by_currency.items():
                total_paid += await self._convert(paid, currency, target)
                total_owed += await self._convert(owed, currency, target)
            net = total_paid - total_owed
            balances.append(UserBalance(
                user_id=user_id,
                total_paid_cents=total_paid,
                total_owed_cents=total_owed,
                net_balance_cents=net,
                currency=target,
                display_amount=self.currency_service.format_amount(net, target),
            ))
        return balances

    async def _convert(self, amount_cents: int, currency: str, target: str) -> int:
        if amount_cents == 0 or currency == target:
            return amount_cents
        conversion = await self.currency_service.convert(amount_cents, currency, target)
        return conversion.converted_amount_cents

    async def _convert_edge(self, edge: DebtEdge, target: str) -> DebtEdge:
        if edge.currency == target:
            return edge
        return edge.model_copy(update={
            "amount_cents": await self._convert(edge.amount_cents, edge.currency, target),
            "currency": target,
        })

    @staticmethod
    def _expense_edges(expense: Expense) -> List[DebtEdge]:
        paid_by: Dict[str, int] = OrderedDict()
        for payment in expense.payments:
            paid_by[payment.user_id] = paid_by.get(payment.user_id, 0) + payment.amount_cents
        if sum(paid_by.values()) <= 0:
            return []

        edges = []
        for share in expense.shares:
            if share.amount_cents <= 0:
                continue
            for payer_id, amount in allocate_cents(share.amount_cents, paid_by).items():
                if payer_id == share.user_id or amount <= 0:
                    continue
                edges.append(DebtEdge(
                    from_user_id=share.user_id,
                    to_user_id=payer_id,
                    amount_cents=amount,
                    currency=expense.currency,
                    source_id=expense.id,
                ))
        return edges
