"""
Unit of work over a Motor client session.

Every service operation that reads a consistent snapshot or writes more
than one document runs inside ``async with uow_factory() as uow`` and
passes ``uow.session`` to the repositories it calls. Leaving the block
normally commits; an exception aborts and propagates.

Without transactions (``MONGODB_TRANSACTIONS=False``, e.g. a standalone
mongod) each write commits on its own. Services register an undo step
with ``on_rollback`` after every write, and those steps run newest-first
when the block raises.
"""

import logging
from functools import partial
from typing import Awaitable, Callable, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from app.core.config import settings
from app.db.mongo import mongodb

logger = logging.getLogger(__name__)

Compensation = Callable[[], Awaitable[object]]


class UnitOfWork:
    def __init__(self, client: AsyncIOMotorClient, transactional: bool = True, read_only: bool = False):
        self.client = client
        self.transactional = transactional
        self.read_only = read_only
        self.session: Optional[AsyncIOMotorClientSession] = None
        self._compensations: List[Compensation] = []

    async def __aenter__(self) -> "UnitOfWork":
        self.session = await self.client.start_session(causal_consistency=True)
        if self.transactional:
            if self.read_only:
                self.session.start_transaction(read_concern=ReadConcern("snapshot"))
            else:
                self.session.start_transaction(
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        try:
            if self.transactional and self.session.in_transaction:
                if exc_type is None:
                    await self.session.commit_transaction()
                else:
                    logger.debug("Aborting transaction after %s", exc_type.__name__)
                    await self.session.abort_transaction()
            elif exc_type is not None:
                await run_compensations(self._compensations, exc_type)
        finally:
            self._compensations.clear()
            await self.session.end_session()
        return False

    def on_rollback(self, compensation: Compensation) -> None:
        """Undo step for a write that already happened; ignored when a transaction covers it."""
        if not self.transactional:
            self._compensations.append(compensation)


async def run_compensations(compensations: List[Compensation], exc_type) -> None:
    logger.warning("Undoing %d write(s) after %s", len(compensations), exc_type.__name__)
    for compensation in reversed(compensations):
        try:
            await compensation()
        except PyMongoError:
            # The original error still propagates; this one needs an operator
            logger.exception("Compensating write failed")


UnitOfWorkFactory = Callable[..., UnitOfWork]


def get_uow_factory() -> UnitOfWorkFactory:
    """Factory bound to the live client; call it with ``read_only=True`` for snapshot reads."""
    return partial(UnitOfWork, mongodb.client, settings.MONGODB_TRANSACTIONS)
