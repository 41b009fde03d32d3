"""
SettlementRepository - settlements and their history.

Status changes are compare-and-swap updates guarded by
``status == PENDING``; a None result means the settlement is missing or
already terminal, and the caller decides which.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.models.base import to_object_id
from app.models.settlement import Settlement, SettlementHistory, SettlementStatus


class SettlementRepository:
    """Repository for settlements (debt repayments)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["settlements"]
        self.history = db["settlement_history"]

    async def insert(self, settlement: Settlement, session=None) -> Settlement:
        await self.collection.insert_one(settlement.to_document(), session=session)
        return settlement

    async def get(self, settlement_id: str, session=None) -> Optional[Settlement]:
        oid = to_object_id(settlement_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid}, session=session)
        if doc:
            return Settlement(**doc)
        return None

    async def list_completed(self, group_id: str, session=None) -> List[Settlement]:
        docs = await self.collection.find(
            {"group_id": group_id, "status": SettlementStatus.COMPLETED.value},
            session=session,
        ).to_list(None)
        return [Settlement(**doc) for doc in docs]

    async def list_for_user(self, group_id: str, user_id: str, session=None) -> List[Settlement]:
        docs = await self.collection.find(
            {
                "group_id": group_id,
                "$or": [{"from_user_id": user_id}, {"to_user_id": user_id}],
            },
            session=session,
        ).sort("created_at", -1).to_list(None)
        return [Settlement(**doc) for doc in docs]

    async def list_by_group(
        self,
        group_id: str,
        page: int = 1,
        limit: int = 20,
        status: Optional[SettlementStatus] = None,
    ) -> Tuple[List[Settlement], int]:
        """One page of a group's settlements, newest first, plus the total count."""
        query: Dict[str, Any] = {"group_id": group_id}
        if status:
            query["status"] = SettlementStatus(status).value

        total = await self.collection.count_documents(query)
        docs = await self.collection.find(query).sort("created_at", -1) \
            .skip((page - 1) * limit).limit(limit).to_list(None)
        return [Settlement(**doc) for doc in docs], total

    async def update_pending(self, settlement_id: str, fields: Dict[str, Any], session=None) -> Optional[Settlement]:
        """Apply ``fields`` only while the settlement is still PENDING."""
        oid = to_object_id(settlement_id)
        if oid is None:
            return None
        update = dict(fields)
        update["updated_at"] = datetime.now(timezone.utc)
        doc = await self.collection.find_one_and_update(
            {"_id": oid, "status": SettlementStatus.PENDING.value},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if doc:
            return Settlement(**doc)
        return None

    async def restore(self, settlement: Settlement, session=None) -> Settlement:
        """Put back an earlier version of a settlement, re-creating it if it was deleted."""
        await self.collection.replace_one(
            {"_id": to_object_id(settlement.id)},
            settlement.to_document(),
            upsert=True,
            session=session,
        )
        return settlement

    async def delete_pending(self, settlement_id: str, session=None) -> bool:
        oid = to_object_id(settlement_id)
        if oid is None:
            return False
        result = await self.collection.delete_one(
            {"_id": oid, "status": SettlementStatus.PENDING.value},
            session=session,
        )
        return result.deleted_count > 0

    async def add_history(self, entry: SettlementHistory, session=None) -> SettlementHistory:
        await self.history.insert_one(entry.to_document(), session=session)
        return entry

    async def list_history(self, settlement_id: str) -> List[SettlementHistory]:
        docs = await self.history.find({"settlement_id": settlement_id}).sort("created_at", -1).to_list(None)
        return [SettlementHistory(**doc) for doc in docs]
