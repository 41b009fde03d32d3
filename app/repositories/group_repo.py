from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.base import to_object_id
from app.models.group import Group


class GroupRepository:
    """Read-only access to groups and their membership."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["groups"]

    async def get_group(self, group_id: str, session=None) -> Optional[Group]:
        oid = to_object_id(group_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid, "is_deleted": {"$ne": True}}, session=session)
        if doc:
            return Group(**doc)
        return None

    async def is_member(self, group_id: str, user_id: str, session=None) -> bool:
        oid = to_object_id(group_id)
        if oid is None:
            return False
        # Member ids may be stored either as ObjectId or as string
        candidates = [user_id]
        user_oid = to_object_id(user_id)
        if user_oid is not None:
            candidates.append(user_oid)
        count = await self.collection.count_documents(
            {"_id": oid, "is_deleted": {"$ne": True}, "members.user_id": {"$in": candidates}},
            limit=1,
            session=session,
        )
        return count > 0
