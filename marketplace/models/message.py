from datetime import datetime

from pydantic import Field

from marketplace.models.base import MarketModel, utcnow

# Reserved ids for system-generated notices
SYSTEM_SENDER_ID = "system"
BROADCAST_RECEIVER_ID = "all"


class Message(MarketModel):
    """One chat turn in a deal. Never edited or removed."""
    deal_id: str
    sender_id: str
    receiver_id: str
    content: str
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def is_system(self) -> bool:
        return self.sender_id == SYSTEM_SENDER_ID
