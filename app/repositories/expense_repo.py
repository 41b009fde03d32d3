"""
ExpenseRepository - read access to expenses, plus the one write the
ledger owns: moving an expense share's settled amount.

The settled amount only ever changes through a conditional single-document
update, so two concurrent partial settlements can never push a share past
its owed amount.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.models.base import to_object_id
from app.models.expense import Expense, ExpenseShare


class ExpenseRepository:
    """Repository for expenses and expense shares."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["expenses"]
        self.shares = db["expense_shares"]

    async def list_active_expenses(self, group_id: str, session=None) -> List[Expense]:
        """Non-archived expenses of a group, each with its shares loaded."""
        docs = await self.collection.find(
            {"group_id": group_id, "is_archived": False},
            session=session,
        ).sort("created_at", 1).to_list(None)
        if not docs:
            return []

        expense_ids = [str(doc["_id"]) for doc in docs]
        share_docs = await self.shares.find(
            {"expense_id": {"$in": expense_ids}},
            session=session,
        ).to_list(None)

        shares_by_expense: Dict[str, List[ExpenseShare]] = {}
        for share_doc in share_docs:
            share = ExpenseShare(**share_doc)
            shares_by_expense.setdefault(share.expense_id, []).append(share)

        expenses = []
        for doc in docs:
            expense = Expense(**doc)
            expense.shares = shares_by_expense.get(expense.id, [])
            expenses.append(expense)
        return expenses

    async def get_share(self, share_id: str, session=None) -> Optional[ExpenseShare]:
        oid = to_object_id(share_id)
        if oid is None:
            return None
        doc = await self.shares.find_one({"_id": oid}, session=session)
        if doc:
            return ExpenseShare(**doc)
        return None

    async def reserve_share_amount(self, share_id: str, amount_cents: int, session=None) -> Optional[ExpenseShare]:
        """
        settled_amount_cents += amount_cents, only if the result stays <= amount_cents.

        Returns the updated share, or None when the share is missing or the
        increment would over-settle it.
        """
        oid = to_object_id(share_id)
        if oid is None or amount_cents <= 0:
            return None
        doc = await self.shares.find_one_and_update(
            {
                "_id": oid,
                "$expr": {
                    "$lte": [
                        {"$add": ["$settled_amount_cents", amount_cents]},
                        "$amount_cents",
                    ]
                },
            },
            {
                "$inc": {"settled_amount_cents": amount_cents},
                "$set": {
                    "last_settlement_at": datetime.now(timezone.utc),
                    "updated_at": datetime.now(timezone.utc),
                },
            },
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if doc:
            return ExpenseShare(**doc)
        return None

    async def release_share_amount(self, share_id: str, amount_cents: int, session=None) -> Optional[ExpenseShare]:
        """Undo a reservation; never takes the settled amount below zero."""
        oid = to_object_id(share_id)
        if oid is None or amount_cents <= 0:
            return None
        doc = await self.shares.find_one_and_update(
            {"_id": oid, "settled_amount_cents": {"$gte": amount_cents}},
            {
                "$inc": {"settled_amount_cents": -amount_cents},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if doc:
            return ExpenseShare(**doc)
        return None
