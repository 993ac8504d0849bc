from datetime import datetime

from pydantic import BaseModel, Field, ConfigDict


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class MessageResponse(BaseModel):
    id: str = Field(validation_alias="_id", serialization_alias="id")
    deal_id: str
    sender_id: str
    receiver_id: str
    content: str
    timestamp: datetime

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)
