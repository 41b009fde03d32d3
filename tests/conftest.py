import copy
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from app.db.session import run_compensations
from app.models.base import new_id
from app.models.expense import Expense, ExpensePayment, ExpenseShare
from app.models.group import Group, GroupMember
from app.models.settlement import Settlement, SettlementHistory, SettlementStatus
from app.services.currency_service import CurrencyService, StaticRateProvider
from app.services.ledger_service import LedgerService
from app.services.rate_cache import MemoryRateCache, RateCache
from app.services.settlement_service import SettlementService


# ===== IN-MEMORY REPOSITORIES =====

class FakeGroupRepository:
    def __init__(self):
        self.groups: Dict[str, Group] = {}

    def add(self, group: Group) -> Group:
        self.groups[group.id] = group
        return group

    async def get_group(self, group_id, session=None) -> Optional[Group]:
        group = self.groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    async def is_member(self, group_id, user_id, session=None) -> bool:
        group = self.groups.get(group_id)
        return bool(group) and group.has_member(user_id)


class FakeExpenseRepository:
    def __init__(self):
        self.expenses: Dict[str, Expense] = {}
        self.shares: Dict[str, ExpenseShare] = {}

    def snapshot(self):
        return copy.deepcopy(self.shares)

    def restore_snapshot(self, state):
        self.shares = state

    async def list_active_expenses(self, group_id, session=None) -> List[Expense]:
        result = []
        for expense in self.expenses.values():
            if expense.group_id != group_id or expense.is_archived:
                continue
            loaded = expense.model_copy(deep=True)
            loaded.shares = [s.model_copy() for s in self.shares.values() if s.expense_id == expense.id]
            result.append(loaded)
        return result

    async def get_share(self, share_id, session=None) -> Optional[ExpenseShare]:
        share = self.shares.get(share_id)
        return share.model_copy() if share else None

    async def reserve_share_amount(self, share_id, amount_cents, session=None):
        share = self.shares.get(share_id)
        if share is None or amount_cents <= 0:
            return None
        if share.settled_amount_cents + amount_cents > share.amount_cents:
            return None
        share.settled_amount_cents += amount_cents
        share.last_settlement_at = datetime.now(timezone.utc)
        return share.model_copy()

    async def release_share_amount(self, share_id, amount_cents, session=None):
        share = self.shares.get(share_id)
        if share is None or share.settled_amount_cents < amount_cents:
            return None
        share.settled_amount_cents -= amount_cents
        return share.model_copy()


class FakeSettlementRepository:
    def __init__(self):
        self.settlements: Dict[str, Settlement] = {}
        self.history: List[SettlementHistory] = []

    def snapshot(self):
        return copy.deepcopy((self.settlements, self.history))

    def restore_snapshot(self, state):
        self.settlements, self.history = state

    async def insert(self, settlement, session=None):
        self.settlements[settlement.id] = settlement.model_copy()
        return settlement

    async def get(self, settlement_id, session=None):
        settlement = self.settlements.get(settlement_id)
        return settlement.model_copy() if settlement else None

    async def list_completed(self, group_id, session=None):
        return [s.model_copy() for s in self.settlements.values()
                if s.group_id == group_id and s.status == SettlementStatus.COMPLETED]

    async def list_for_user(self, group_id, user_id, session=None):
        return [s.model_copy() for s in self.settlements.values()
                if s.group_id == group_id and s.involves(user_id)]

    async def list_by_group(self, group_id, page=1, limit=20, status=None):
        matching = [s for s in self.settlements.values()
                    if s.group_id == group_id and (status is None or s.status == status)]
        matching.sort(key=lambda s: s.created_at, reverse=True)
        start = (page - 1) * limit
        return [s.model_copy() for s in matching[start:start + limit]], len(matching)

    async def update_pending(self, settlement_id, fields, session=None):
        settlement = self.settlements.get(settlement_id)
        if settlement is None or settlement.status != SettlementStatus.PENDING:
            return None
        updated = settlement.model_copy(update={**fields, "updated_at": datetime.now(timezone.utc)})
        # Re-validate so enum fields stay consistent with a round trip through Mongo
        updated = Settlement(**updated.model_dump(by_alias=True))
        self.settlements[settlement_id] = updated
        return updated.model_copy()

    async def restore(self, settlement, session=None):
        self.settlements[settlement.id] = settlement.model_copy()
        return settlement

    async def delete_pending(self, settlement_id, session=None):
        settlement = self.settlements.get(settlement_id)
        if settlement is None or settlement.status != SettlementStatus.PENDING:
            return False
        del self.settlements[settlement_id]
        return True

    async def add_history(self, entry, session=None):
        self.history.append(entry)
        return entry

    async def list_history(self, settlement_id):
        # Appended in creation order
        return [h for h in reversed(self.history) if h.settlement_id == settlement_id]


class FakeExchangeRateRepository:
    def __init__(self):
        self.rates = {}

    async def get(self, from_currency, to_currency):
        return self.rates.get((from_currency, to_currency))

    async def upsert(self, rate):
        self.rates[(rate.from_currency, rate.to_currency)] = rate

    async def delete_expired(self, now=None):
        expired = [k for k, r in self.rates.items() if r.is_expired(now)]
        for key in expired:
            del self.rates[key]
        return len(expired)


class FakeUnitOfWork:
    """Restores every store it guards when the block raises.

    With ``transactional=False`` nothing is restored; only the undo steps
    registered through ``on_rollback`` run, like against a standalone mongod.
    """

    def __init__(self, stores, log, read_only=False, transactional=True):
        self.stores = stores
        self.log = log
        self.read_only = read_only
        self.transactional = transactional
        self.session = None
        self._compensations = []

    async def __aenter__(self):
        self._saved = [store.snapshot() for store in self.stores]
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.log.append("commit")
        elif self.transactional:
            for store, state in zip(self.stores, self._saved):
                store.restore_snapshot(state)
            self.log.append("abort")
        else:
            await run_compensations(self._compensations, exc_type)
            self.log.append("compensated")
        return False

    def on_rollback(self, compensation):
        if not self.transactional:
            self._compensations.append(compensation)


# ===== FIXTURES =====

@pytest.fixture
def repos():
    return SimpleNamespace(
        groups=FakeGroupRepository(),
        expenses=FakeExpenseRepository(),
        settlements=FakeSettlementRepository(),
        rates=FakeExchangeRateRepository(),
        uow_log=[],
    )


@pytest.fixture
def uow_factory(repos):
    def factory(read_only=False):
        return FakeUnitOfWork([repos.expenses, repos.settlements], repos.uow_log, read_only)
    return factory


@pytest.fixture
def non_transactional_service(repos, currency_service):
    def factory(read_only=False):
        return FakeUnitOfWork([repos.expenses, repos.settlements], repos.uow_log, read_only,
                              transactional=False)
    return SettlementService(repos.groups, repos.expenses, repos.settlements, currency_service, factory)


@pytest.fixture
def rate_provider():
    return StaticRateProvider()


@pytest.fixture
def currency_service(repos, rate_provider):
    cache = RateCache(repos.rates, MemoryRateCache(max_entries=32), ttl_seconds=3600)
    return CurrencyService(cache, rate_provider, fetch_timeout=1.0)


@pytest.fixture
def ledger(repos, currency_service, uow_factory):
    return LedgerService(repos.groups, repos.expenses, repos.settlements, currency_service, uow_factory)


@pytest.fixture
def settlement_service(repos, currency_service, uow_factory):
    return SettlementService(repos.groups, repos.expenses, repos.settlements, currency_service, uow_factory)


@pytest.fixture
def make_group(repos):
    def _make(members, default_currency="USD", preferred_currency=None, name="Trip"):
        group = Group(
            name=name,
            default_currency=default_currency,
            preferred_currency=preferred_currency,
            members=[GroupMember(user_id=m) for m in members],
        )
        return repos.groups.add(group)
    return _make


@pytest.fixture
def add_expense(repos):
    """Store an expense with explicit payer and owed amounts (cents)."""
    def _add(group, paid: Dict[str, int], owed: Dict[str, int], currency=None,
             description="Expense", archived=False) -> Expense:
        currency = currency or group.default_currency
        expense = Expense(
            group_id=group.id,
            description=description,
            amount_cents=sum(owed.values()),
            currency=currency,
            is_archived=archived,
            payments=[ExpensePayment(user_id=u, amount_cents=a) for u, a in paid.items()],
        )
        repos.expenses.expenses[expense.id] = expense
        for user_id, amount in owed.items():
            share = ExpenseShare(
                expense_id=expense.id,
                group_id=group.id,
                user_id=user_id,
                amount_cents=amount,
                currency=currency,
            )
            repos.expenses.shares[share.id] = share
        return expense
    return _add


@pytest.fixture
def share_of(repos):
    def _find(expense, user_id) -> ExpenseShare:
        return next(s for s in repos.expenses.shares.values()
                    if s.expense_id == expense.id and s.user_id == user_id)
    return _find


@pytest.fixture
def user_ids():
    return SimpleNamespace(alice=new_id(), bob=new_id(), carol=new_id(), dave=new_id())
