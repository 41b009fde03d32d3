"""
Group model - read-only view of a group and its membership.

Groups are owned by the group subsystem; the ledger only reads them to
scope computations and check membership.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.base import MongoModel, IdStr


class GroupMember(BaseModel):
    user_id: IdStr
    role: str = "member"  # "admin" or "member"
    joined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Group(MongoModel):
    name: str = ""
    default_currency: str = "USD"
    preferred_currency: Optional[str] = None
    members: List[GroupMember] = []
    is_deleted: bool = False

    @field_validator("default_currency", "preferred_currency")
    @classmethod
    def _upper(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    def member_ids(self) -> List[str]:
        """Member user ids in membership order."""
        return [m.user_id for m in self.members]

    def has_member(self, user_id: str) -> bool:
        return any(m.user_id == user_id for m in self.members)
