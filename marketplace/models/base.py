from datetime import datetime, timezone

from bson import ObjectId
from pydantic import BaseModel, Field, ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


class MarketModel(BaseModel):
    """Base for every stored record. Ids are stringified ObjectIds under ``_id``."""
    id: str = Field(default_factory=new_id, alias="_id")

    model_config = ConfigDict(
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True,
        validate_default=True
    )

    def to_document(self) -> dict:
        """Dump to the shape the record store persists."""
        return self.model_dump(by_alias=True)
