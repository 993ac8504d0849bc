from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

from marketplace.models.invoice import CompanySize, InvoiceStatus


class InvoiceCreate(BaseModel):
    """Seller listing request. Validation of the business rules happens in the repository."""
    amount: int
    due_date: Optional[date] = None
    industry: Optional[str] = None
    company_size: Optional[CompanySize] = None
    company_credit: str = ""
    requested_amount: Optional[int] = None
    evidence_url: Optional[str] = None
    evidence_name: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class InvoiceUpdate(BaseModel):
    """Edit an open invoice. All fields optional."""
    amount: Optional[int] = None
    due_date: Optional[date] = None
    industry: Optional[str] = None
    company_size: Optional[CompanySize] = None
    company_credit: Optional[str] = None
    requested_amount: Optional[int] = None
    evidence_url: Optional[str] = None
    evidence_name: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class InvoiceResponse(BaseModel):
    id: str = Field(validation_alias="_id", serialization_alias="id")
    seller_id: str
    amount: int
    due_date: date
    industry: str
    company_size: Optional[CompanySize] = None
    company_credit: str
    requested_amount: int
    evidence_url: Optional[str] = None
    evidence_name: Optional[str] = None
    status: InvoiceStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)
