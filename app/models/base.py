from datetime import datetime, timezone
from typing import Annotated, Any, Optional

from bson import ObjectId
from pydantic import BaseModel, BeforeValidator, Field, ConfigDict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_id(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    return value


# Ids travel as strings through the services; repositories convert at the edge
IdStr = Annotated[str, BeforeValidator(_coerce_id)]


def new_id() -> str:
    return str(ObjectId())


def to_object_id(value: str) -> Optional[ObjectId]:
    """Return an ObjectId, or None when the string is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


class MongoModel(BaseModel):
    id: IdStr = Field(default_factory=new_id, alias="_id")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        from_attributes=True,
        use_enum_values=True
    )

    def to_document(self) -> dict:
        """Serialize for insertion, with ``_id`` as a real ObjectId."""
        doc = self.model_dump(by_alias=True)
        doc["_id"] = to_object_id(doc["_id"]) or doc["_id"]
        return doc
