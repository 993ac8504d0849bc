from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import Field, field_serializer

from marketplace.models.base import MarketModel, utcnow


class InvoiceStatus(str, Enum):
    OPEN = "open"
    NEGOTIATING = "negotiating"
    SOLD = "sold"


class CompanySize(str, Enum):
    LISTED = "Listed"
    LARGE = "Large"
    SMB = "SMB"
    INDIVIDUAL = "Individual"


# Allowed status moves; nothing ever returns to OPEN
INVOICE_TRANSITIONS = {
    InvoiceStatus.OPEN: {InvoiceStatus.NEGOTIATING, InvoiceStatus.SOLD},
    InvoiceStatus.NEGOTIATING: {InvoiceStatus.SOLD},
    InvoiceStatus.SOLD: set(),
}


class Invoice(MarketModel):
    """A receivable listed for sale. Amounts are whole yen."""
    seller_id: str
    amount: int
    due_date: date
    industry: str
    company_size: Optional[CompanySize] = None
    company_credit: str = ""
    requested_amount: int
    evidence_url: Optional[str] = None
    evidence_name: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.OPEN
    accepted_deal_id: Optional[str] = None

    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_serializer("due_date")
    def _serialize_due_date(self, value: date) -> str:
        # BSON has no plain date type
        return value.isoformat()

    @property
    def is_open(self) -> bool:
        return self.status == InvoiceStatus.OPEN
