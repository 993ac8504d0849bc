"""
Deal model - one buyer's negotiation thread against one invoice.

State machine:
    pending --accept--> negotiating --complete--> agreed
    pending --sibling accepted--> rejected

agreed and rejected are terminal.
"""

from datetime import datetime
from enum import Enum

from pydantic import Field

from marketplace.models.base import MarketModel, utcnow


class DealStatus(str, Enum):
    PENDING = "pending"
    NEGOTIATING = "negotiating"
    AGREED = "agreed"
    REJECTED = "rejected"


ACTIVE_DEAL_STATUSES = (DealStatus.NEGOTIATING, DealStatus.AGREED)
TERMINAL_DEAL_STATUSES = (DealStatus.AGREED, DealStatus.REJECTED)


class Deal(MarketModel):
    invoice_id: str
    buyer_id: str
    seller_id: str
    status: DealStatus = DealStatus.PENDING

    initial_offer_amount: int
    current_amount: int

    started_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def counterpart_of(self, user_id: str) -> str:
        """The other party of the deal."""
        return self.seller_id if user_id == self.buyer_id else self.buyer_id
