from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import PyMongoError

from app.db.session import UnitOfWork


@pytest.fixture
def client():
    session = MagicMock()
    session.in_transaction = True
    session.commit_transaction = AsyncMock()
    session.abort_transaction = AsyncMock()
    session.end_session = AsyncMock()
    mock = MagicMock()
    mock.start_session = AsyncMock(return_value=session)
    return mock


@pytest.mark.asyncio
class TestUnitOfWork:
    async def test_commits_transaction(self, client):
        async with UnitOfWork(client) as uow:
            uow.on_rollback(AsyncMock())

        uow.session.commit_transaction.assert_awaited_once()
        uow.session.end_session.assert_awaited_once()

    async def test_abort_skips_compensations(self, client):
        undo = AsyncMock()

        with pytest.raises(ValueError):
            async with UnitOfWork(client) as uow:
                uow.on_rollback(undo)
                raise ValueError("boom")

        uow.session.abort_transaction.assert_awaited_once()
        undo.assert_not_awaited()

    async def test_without_transaction_undoes_newest_first(self, client):
        calls = []
        first = AsyncMock(side_effect=lambda: calls.append("first"))
        second = AsyncMock(side_effect=lambda: calls.append("second"))

        with pytest.raises(ValueError):
            async with UnitOfWork(client, transactional=False) as uow:
                uow.on_rollback(first)
                uow.on_rollback(second)
                raise ValueError("boom")

        assert calls == ["second", "first"]
        uow.session.start_transaction.assert_not_called()
        uow.session.end_session.assert_awaited_once()

    async def test_failed_compensation_keeps_original_error(self, client):
        later = AsyncMock()

        with pytest.raises(ValueError):
            async with UnitOfWork(client, transactional=False) as uow:
                uow.on_rollback(later)
                uow.on_rollback(AsyncMock(side_effect=PyMongoError("down")))
                raise ValueError("boom")

        later.assert_awaited_once()

    async def test_success_without_transaction_runs_nothing(self, client):
        undo = AsyncMock()

        async with UnitOfWork(client, transactional=False) as uow:
            uow.on_rollback(undo)

        undo.assert_not_awaited()
        uow.session.commit_transaction.assert_not_called()
