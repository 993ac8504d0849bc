"""
MessagingLog - append-only chat thread per deal.

Participants may only write while the deal is negotiating. The deal engine
uses the privileged ``record``/``append_system`` paths for the opening offer
message and for acceptance/completion notices, which bypass that gate.
"""

import logging
from datetime import datetime
from typing import Callable, List

from marketplace.core.exceptions import DealNotNegotiating, ValidationError
from marketplace.db.store import ASCENDING, DEALS, MESSAGES, RecordStore
from marketplace.models.base import utcnow
from marketplace.models.deal import Deal, DealStatus
from marketplace.models.message import BROADCAST_RECEIVER_ID, SYSTEM_SENDER_ID, Message

logger = logging.getLogger(__name__)


class MessagingLog:

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def append(self, deal_id: str, sender_id: str, receiver_id: str, content: str) -> Message:
        """Participant message. Raises DealNotNegotiating unless the deal is negotiating."""
        deal = Deal(**await self.store.get(DEALS, deal_id))
        if deal.status != DealStatus.NEGOTIATING:
            raise DealNotNegotiating(f"Deal {deal_id} is {deal.status}; messages are closed")
        if sender_id == receiver_id or not (deal.is_party(sender_id) and deal.is_party(receiver_id)):
            raise ValidationError("Messages must go between the buyer and the seller of the deal")
        if not content or not content.strip():
            raise ValidationError("Message content is empty")
        return await self.record(deal, sender_id, receiver_id, content)

    async def record(self, deal: Deal, sender_id: str, receiver_id: str, content: str) -> Message:
        """Write a message without the status gate."""
        message = Message(
            deal_id=deal.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            timestamp=self.clock()
        )
        doc = await self.store.insert(MESSAGES, message.to_document())
        await self.store.update(DEALS, deal.id, {"last_activity_at": message.timestamp})
        return Message(**doc)

    async def append_system(self, deal: Deal, content: str) -> Message:
        """System notice visible to both parties."""
        logger.info("System notice on deal %s: %s", deal.id, content)
        return await self.record(deal, SYSTEM_SENDER_ID, BROADCAST_RECEIVER_ID, content)

    async def list_for_deal(self, deal_id: str) -> List[Message]:
        """Thread in chronological order."""
        docs = await self.store.find(
            MESSAGES,
            {"deal_id": deal_id},
            sort=[("timestamp", ASCENDING)]
        )
        return [Message(**doc) for doc in docs]
