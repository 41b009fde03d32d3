"""Tests for the Mongo repositories, against mocked collections."""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

from app.models.exchange_rate import ExchangeRate
from app.models.settlement import Settlement, SettlementStatus
from app.repositories.exchange_rate_repo import ExchangeRateRepository
from app.repositories.expense_repo import ExpenseRepository
from app.repositories.group_repo import GroupRepository
from app.repositories.settlement_repo import SettlementRepository


@pytest.fixture
def mock_db():
    collections = {}

    def collection(name):
        if name not in collections:
            coll = MagicMock()
            for method in ("find_one", "find_one_and_update", "insert_one", "update_one",
                           "delete_one", "delete_many", "count_documents"):
                setattr(coll, method, AsyncMock())
            collections[name] = coll
        return collections[name]

    db = MagicMock()
    db.__getitem__.side_effect = collection
    return db


def cursor(docs):
    mock = MagicMock()
    mock.sort.return_value = mock
    mock.skip.return_value = mock
    mock.limit.return_value = mock
    mock.to_list = AsyncMock(return_value=docs)
    return mock


def share_doc(**overrides):
    doc = {
        "_id": ObjectId(),
        "expense_id": str(ObjectId()),
        "group_id": str(ObjectId()),
        "user_id": "bob",
        "amount_cents": 6000,
        "currency": "USD",
        "settled_amount_cents": 0,
    }
    doc.update(overrides)
    return doc


@pytest.mark.asyncio
class TestExpenseRepository:
    """Share reservations are single-document conditional updates."""

    async def test_reserve_is_guarded_by_owed_amount(self, mock_db):
        repo = ExpenseRepository(mock_db)
        doc = share_doc(settled_amount_cents=2500)
        repo.shares.find_one_and_update.return_value = doc

        share = await repo.reserve_share_amount(str(doc["_id"]), 2500, session="s")

        assert share.settled_amount_cents == 2500
        query, update = repo.shares.find_one_and_update.call_args[0]
        assert query["_id"] == doc["_id"]
        assert query["$expr"] == {
            "$lte": [{"$add": ["$settled_amount_cents", 2500]}, "$amount_cents"]
        }
        assert update["$inc"] == {"settled_amount_cents": 2500}
        assert repo.shares.find_one_and_update.call_args.kwargs["session"] == "s"

    async def test_reserve_rejected_when_nothing_matches(self, mock_db):
        repo = ExpenseRepository(mock_db)
        repo.shares.find_one_and_update.return_value = None

        assert await repo.reserve_share_amount(str(ObjectId()), 100) is None

    async def test_reserve_invalid_input(self, mock_db):
        repo = ExpenseRepository(mock_db)

        assert await repo.reserve_share_amount("not-an-id", 100) is None
        assert await repo.reserve_share_amount(str(ObjectId()), 0) is None
        repo.shares.find_one_and_update.assert_not_called()

    async def test_release_never_goes_negative(self, mock_db):
        repo = ExpenseRepository(mock_db)
        repo.shares.find_one_and_update.return_value = share_doc()
        share_id = ObjectId()

        await repo.release_share_amount(str(share_id), 300)

        query, update = repo.shares.find_one_and_update.call_args[0]
        assert query == {"_id": share_id, "settled_amount_cents": {"$gte": 300}}
        assert update["$inc"] == {"settled_amount_cents": -300}

    async def test_list_active_expenses_attaches_shares(self, mock_db):
        repo = ExpenseRepository(mock_db)
        expense_id = ObjectId()
        repo.collection.find = MagicMock(return_value=cursor([{
            "_id": expense_id,
            "group_id": "g1",
            "amount_cents": 6000,
            "currency": "USD",
            "payments": [{"user_id": "alice", "amount_cents": 6000}],
        }]))
        repo.shares.find = MagicMock(return_value=cursor([share_doc(expense_id=str(expense_id))]))

        expenses = await repo.list_active_expenses("g1")

        assert len(expenses) == 1
        assert expenses[0].id == str(expense_id)
        assert [s.user_id for s in expenses[0].shares] == ["bob"]
        assert repo.collection.find.call_args[0][0] == {"group_id": "g1", "is_archived": False}


@pytest.mark.asyncio
class TestSettlementRepository:
    async def test_update_pending_is_status_guarded(self, mock_db):
        repo = SettlementRepository(mock_db)
        repo.collection.find_one_and_update.return_value = None
        settlement_id = ObjectId()

        result = await repo.update_pending(str(settlement_id), {"status": "COMPLETED"})

        assert result is None
        query, update = repo.collection.find_one_and_update.call_args[0]
        assert query == {"_id": settlement_id, "status": "PENDING"}
        assert update["$set"]["status"] == "COMPLETED"
        assert "updated_at" in update["$set"]

    async def test_insert_uses_object_id(self, mock_db):
        repo = SettlementRepository(mock_db)
        settlement = Settlement(group_id="g1", from_user_id="bob", to_user_id="alice",
                                amount_cents=100, currency="USD")

        await repo.insert(settlement)

        doc = repo.collection.insert_one.call_args[0][0]
        assert doc["_id"] == ObjectId(settlement.id)
        assert doc["status"] == "PENDING"

    async def test_delete_pending(self, mock_db):
        repo = SettlementRepository(mock_db)
        repo.collection.delete_one.return_value = MagicMock(deleted_count=0)

        assert await repo.delete_pending(str(ObjectId())) is False
        assert repo.collection.delete_one.call_args[0][0]["status"] == SettlementStatus.PENDING.value

    async def test_list_by_group_paginates(self, mock_db):
        repo = SettlementRepository(mock_db)
        repo.collection.count_documents.return_value = 25
        page_cursor = cursor([])
        repo.collection.find = MagicMock(return_value=page_cursor)

        settlements, total = await repo.list_by_group("g1", page=3, limit=10, status=SettlementStatus.COMPLETED)

        assert (settlements, total) == ([], 25)
        assert repo.collection.find.call_args[0][0] == {"group_id": "g1", "status": "COMPLETED"}
        page_cursor.skip.assert_called_once_with(20)
        page_cursor.limit.assert_called_once_with(10)

    async def test_get_with_invalid_id(self, mock_db):
        repo = SettlementRepository(mock_db)

        assert await repo.get("invalid") is None
        repo.collection.find_one.assert_not_called()


@pytest.mark.asyncio
class TestGroupRepository:
    async def test_is_member_matches_string_or_object_id(self, mock_db):
        repo = GroupRepository(mock_db)
        repo.collection.count_documents.return_value = 1
        user_id = ObjectId()

        assert await repo.is_member(str(ObjectId()), str(user_id))

        query = repo.collection.count_documents.call_args[0][0]
        assert query["members.user_id"] == {"$in": [str(user_id), user_id]}

    async def test_deleted_groups_are_hidden(self, mock_db):
        repo = GroupRepository(mock_db)
        repo.collection.find_one.return_value = None

        assert await repo.get_group(str(ObjectId())) is None
        assert repo.collection.find_one.call_args[0][0]["is_deleted"] == {"$ne": True}


@pytest.mark.asyncio
class TestExchangeRateRepository:
    async def test_upsert_by_pair(self, mock_db):
        repo = ExchangeRateRepository(mock_db)
        now = datetime.now(timezone.utc)
        rate = ExchangeRate(from_currency="USD", to_currency="EUR", rate=0.9,
                            fetched_at=now, expires_at=now + timedelta(hours=1))

        await repo.upsert(rate)

        query, update = repo.collection.update_one.call_args[0]
        assert query == {"from_currency": "USD", "to_currency": "EUR"}
        assert update["$set"]["rate"] == 0.9
        assert repo.collection.update_one.call_args.kwargs["upsert"] is True

    async def test_naive_expiry_is_utc(self, mock_db):
        repo = ExchangeRateRepository(mock_db)
        past = (datetime.now(timezone.utc) - timedelta(hours=1)).replace(tzinfo=None)
        repo.collection.find_one.return_value = {
            "_id": ObjectId(), "from_currency": "USD", "to_currency": "EUR",
            "rate": 0.9, "fetched_at": past, "expires_at": past,
        }

        stored = await repo.get("USD", "EUR")

        assert stored.is_expired()
