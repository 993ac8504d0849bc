from datetime import datetime

from pydantic import BaseModel, Field, ConfigDict

from marketplace.models.deal import DealStatus


class OfferCreate(BaseModel):
    invoice_id: str
    amount: int
    message: str = ""


class AmountRevision(BaseModel):
    amount: int


class DealResponse(BaseModel):
    id: str = Field(validation_alias="_id", serialization_alias="id")
    invoice_id: str
    buyer_id: str
    seller_id: str
    status: DealStatus
    initial_offer_amount: int
    current_amount: int
    started_at: datetime
    last_activity_at: datetime
    is_top_offer: bool = False

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)
