"""
DealEngine - offers, ranking, acceptance and completion.

Core invariant: per invoice, at most one deal is ever negotiating or agreed.

Acceptance order:
1. Claim the invoice with a conditional open -> negotiating write. This is the
   single point where competing accepts are serialized; the loser sees a
   ConflictError, retries once, then fails with InvalidTransition.
2. Promote the accepted deal pending -> negotiating.
3. Reject every other deal on the invoice.

Because only the session that claimed the invoice promotes a deal, no
observer can ever see two negotiating deals for the same invoice.

A store failure between these steps leaves the invoice claimed for the deal.
Accepting the same deal again resumes from there. If the claiming deal was
withdrawn instead (a same-buyer duplicate), the claim is handed over to the
next offer the seller accepts. Completion resumes the same way: an agreed
deal whose invoice is not yet sold is finished by completing it again.

Offer submission re-reads the invoice after inserting the deal. An offer
that lands after a concurrent accept claimed the invoice rejects itself and
fails with InvoiceLocked.
"""

import logging
from datetime import datetime
from typing import Callable, List

from marketplace.core.concurrency import retry_on_conflict
from marketplace.core.exceptions import (
    ConflictError,
    DuplicateOffer,
    Forbidden,
    InvalidTransition,
    InvoiceLocked,
    ValidationError,
)
from marketplace.db.store import ASCENDING, DEALS, DESCENDING, RecordStore
from marketplace.models.base import utcnow
from marketplace.models.deal import ACTIVE_DEAL_STATUSES, TERMINAL_DEAL_STATUSES, Deal, DealStatus
from marketplace.models.invoice import Invoice, InvoiceStatus
from marketplace.repositories.invoice_repo import InvoiceRepository
from marketplace.services.market import MarketAggregator
from marketplace.services.messaging import MessagingLog

logger = logging.getLogger(__name__)

ACCEPTED_NOTICE = "Offer accepted. Negotiation has started."
COMPLETED_NOTICE = "Deal completed. Congratulations!"


def rank_offers(deals: List[Deal]) -> List[Deal]:
    """Highest current amount first; ties go to the earliest activity."""
    return sorted(
        deals,
        key=lambda deal: (-deal.current_amount, deal.last_activity_at, deal.started_at)
    )


def validate_offer_amount(amount: int, invoice: Invoice) -> None:
    if amount is None or amount <= 0:
        raise ValidationError(f"Offer amount must be positive: {amount}")
    if amount > invoice.amount:
        raise ValidationError(
            f"Offer amount ({amount}) exceeds invoice amount ({invoice.amount})"
        )


class DealEngine:

    def __init__(
        self,
        store: RecordStore,
        invoices: InvoiceRepository,
        messages: MessagingLog,
        market: MarketAggregator,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.invoices = invoices
        self.messages = messages
        self.market = market
        self.clock = clock

    async def get(self, deal_id: str) -> Deal:
        """Get a deal by id. Raises NotFound."""
        return Deal(**await self.store.get(DEALS, deal_id))

    async def submit_offer(
        self,
        invoice_id: str,
        buyer_id: str,
        amount: int,
        message: str,
        strict: bool = False
    ) -> Deal:
        """
        Open a pending deal against an open invoice.

        A buyer holds at most one live offer per invoice: a repeat submission
        returns the existing deal untouched, or raises DuplicateOffer when
        ``strict`` is set. The invoice stays open so the seller can choose
        among competing offers.
        """
        invoice = await self.invoices.get(invoice_id)
        if invoice.seller_id == buyer_id:
            raise Forbidden("Sellers cannot bid on their own invoice")
        if not invoice.is_open:
            raise InvoiceLocked(f"Invoice {invoice_id} is {invoice.status}; offers are closed")
        validate_offer_amount(amount, invoice)

        existing = await self._live_deals_of_buyer(invoice_id, buyer_id)
        if existing:
            if strict:
                raise DuplicateOffer(f"Buyer {buyer_id} already has deal {existing[0].id} on invoice {invoice_id}")
            logger.info("Buyer %s already has deal %s on invoice %s", buyer_id, existing[0].id, invoice_id)
            return existing[0]

        now = self.clock()
        deal = Deal(
            invoice_id=invoice_id,
            buyer_id=buyer_id,
            seller_id=invoice.seller_id,
            status=DealStatus.PENDING,
            initial_offer_amount=amount,
            current_amount=amount,
            started_at=now,
            last_activity_at=now
        )
        deal = Deal(**await self.store.insert(DEALS, deal.to_document()))

        # A double submit from the same buyer may have raced us; oldest wins
        live = await self._live_deals_of_buyer(invoice_id, buyer_id)
        if live and live[0].id != deal.id:
            await self._reject_pending(deal)
            return live[0]

        invoice = await self.invoices.get(invoice_id)
        if not invoice.is_open and invoice.accepted_deal_id != deal.id:
            await self._reject_pending(deal)
            raise InvoiceLocked(f"Invoice {invoice_id} was taken into negotiation; offer withdrawn")

        content = message.strip() if message else ""
        await self.messages.record(
            deal,
            buyer_id,
            deal.seller_id,
            content or f"Offer submitted: {amount:,}"
        )
        logger.info("Deal %s: buyer %s offered %s on invoice %s", deal.id, buyer_id, amount, invoice_id)
        return await self.get(deal.id)

    async def accept_offer(self, deal_id: str, acting_seller_id: str) -> Deal:
        """
        Start negotiation on one offer and reject all of its competitors.

        Calling again after a failure part-way through finishes the
        acceptance: a claimed invoice is not claimed twice, and a promoted
        deal only gets its remaining siblings rejected.
        """
        deal = await self.get(deal_id)
        invoice = await self.invoices.get(deal.invoice_id)
        if invoice.seller_id != acting_seller_id:
            raise Forbidden("Only the invoice seller can accept offers")
        claimed = invoice.status == InvoiceStatus.NEGOTIATING and invoice.accepted_deal_id == deal.id

        if deal.status == DealStatus.PENDING:
            if claimed:
                logger.warning("Deal %s: invoice %s already claimed, resuming acceptance", deal.id, invoice.id)
            else:
                await self._claim_invoice(invoice, deal)
            await self._promote(deal)
        elif deal.status == DealStatus.NEGOTIATING and claimed and await self._live_siblings(deal):
            logger.warning("Deal %s: resuming rejection of competing offers", deal.id)
        else:
            raise InvalidTransition(f"Deal {deal_id} is {deal.status}; only pending offers can be accepted")

        for sibling in await self._live_siblings(deal):
            await self.store.update(
                DEALS,
                sibling.id,
                {"status": DealStatus.REJECTED.value, "version": sibling.version + 1}
            )
            logger.info("Deal %s rejected: invoice %s accepted deal %s", sibling.id, invoice.id, deal.id)

        accepted = await self.get(deal.id)
        if not await self._has_notice(accepted, ACCEPTED_NOTICE):
            await self.messages.append_system(accepted, ACCEPTED_NOTICE)
        logger.info("Deal %s accepted by seller %s", deal.id, acting_seller_id)
        return await self.get(deal.id)

    async def complete_deal(self, deal_id: str, acting_participant_id: str) -> Deal:
        """
        Close a negotiating deal as agreed, sell the invoice and update market stats.

        An agreed deal whose invoice was never marked sold is finished by
        calling again; the market counts each completion once.
        """

        async def attempt() -> Deal:
            deal = await self.get(deal_id)
            if not deal.is_party(acting_participant_id):
                raise Forbidden("Only the buyer or the seller of this deal can complete it")
            if deal.status == DealStatus.AGREED:
                return deal
            if deal.status != DealStatus.NEGOTIATING:
                raise InvalidTransition(f"Deal {deal_id} is {deal.status}; only negotiating deals can be completed")

            fields = {
                "status": DealStatus.AGREED.value,
                "version": deal.version + 1,
                "last_activity_at": self.clock()
            }
            await self.store.update(
                DEALS,
                deal_id,
                fields,
                expected={"status": DealStatus.NEGOTIATING.value, "version": deal.version}
            )
            return deal.model_copy(update=fields)

        deal = await retry_on_conflict(attempt, f"complete deal {deal_id}")
        invoice = await self.invoices.get(deal.invoice_id)
        if invoice.status == InvoiceStatus.SOLD:
            raise InvalidTransition(f"Deal {deal_id} is already agreed")

        invoice = await self.invoices.transition_status(deal.invoice_id, InvoiceStatus.SOLD)
        await self.market.record_completion(invoice.amount, deal.current_amount)
        await self.messages.append_system(deal, COMPLETED_NOTICE)
        logger.info("Deal %s agreed at %s (face %s)", deal_id, deal.current_amount, invoice.amount)
        return await self.get(deal_id)

    async def revise_amount(self, deal_id: str, acting_participant_id: str, amount: int) -> Deal:
        """
        Change a deal's current amount.

        The buyer may revise a pending offer; either party may propose a new
        price while negotiating. Terminal deals are frozen.
        """

        async def attempt() -> Deal:
            deal = await self.get(deal_id)
            if not deal.is_party(acting_participant_id):
                raise Forbidden("Only the buyer or the seller of this deal can revise it")
            if deal.status == DealStatus.PENDING and acting_participant_id != deal.buyer_id:
                raise Forbidden("Only the buyer can revise a pending offer")
            if deal.status in TERMINAL_DEAL_STATUSES:
                raise InvalidTransition(f"Deal {deal_id} is {deal.status} and can no longer change")
            validate_offer_amount(amount, await self.invoices.get(deal.invoice_id))

            fields = {
                "current_amount": amount,
                "version": deal.version + 1,
                "last_activity_at": self.clock()
            }
            await self.store.update(
                DEALS,
                deal_id,
                fields,
                expected={"status": deal.status, "version": deal.version}
            )
            return deal.model_copy(update=fields)

        deal = await retry_on_conflict(attempt, f"revise deal {deal_id}")
        if deal.status == DealStatus.NEGOTIATING:
            await self.messages.append_system(deal, f"Proposed amount changed to {amount:,}")
        return await self.get(deal_id)

    async def list_for_invoice(self, invoice_id: str) -> List[Deal]:
        """Seller review order; index 0 is the top offer."""
        docs = await self.store.find(DEALS, {"invoice_id": invoice_id})
        return rank_offers([Deal(**doc) for doc in docs])

    async def list_for_buyer(self, buyer_id: str) -> List[Deal]:
        docs = await self.store.find(
            DEALS,
            {"buyer_id": buyer_id},
            sort=[("last_activity_at", DESCENDING)]
        )
        return [Deal(**doc) for doc in docs]

    async def list_for_seller(self, seller_id: str) -> List[Deal]:
        docs = await self.store.find(
            DEALS,
            {"seller_id": seller_id},
            sort=[("last_activity_at", DESCENDING)]
        )
        return [Deal(**doc) for doc in docs]

    async def _claim_invoice(self, invoice: Invoice, deal: Deal) -> None:
        """Take the invoice into negotiation for ``deal``; the loser of a race gets InvalidTransition."""
        if invoice.status == InvoiceStatus.NEGOTIATING and await self._claim_is_stranded(invoice):
            await self.invoices.reassign_claim(invoice.id, invoice.accepted_deal_id, deal.id)
            return
        await self.invoices.transition_status(
            invoice.id,
            InvoiceStatus.NEGOTIATING,
            accepted_deal_id=deal.id
        )

    async def _claim_is_stranded(self, invoice: Invoice) -> bool:
        """True when the claiming deal was withdrawn before it was promoted."""
        if invoice.accepted_deal_id is None:
            return False
        docs = await self.store.find(DEALS, {"invoice_id": invoice.id})
        deals = {doc["_id"]: Deal(**doc) for doc in docs}
        claimer = deals.get(invoice.accepted_deal_id)
        if claimer is None or claimer.status != DealStatus.REJECTED:
            return False
        return not any(d.status in ACTIVE_DEAL_STATUSES for d in deals.values())

    async def _promote(self, deal: Deal) -> None:
        try:
            await self.store.update(
                DEALS,
                deal.id,
                {"status": DealStatus.NEGOTIATING.value, "version": deal.version + 1, "last_activity_at": self.clock()},
                expected={"status": DealStatus.PENDING.value}
            )
        except ConflictError as e:
            # A concurrent accept of the same deal won, or a same-buyer duplicate was withdrawn
            logger.error("Deal %s left pending while invoice %s was claimed for it", deal.id, deal.invoice_id)
            raise InvalidTransition(f"Deal {deal.id} changed before it could be accepted") from e

    async def _live_siblings(self, deal: Deal) -> List[Deal]:
        docs = await self.store.find(
            DEALS,
            {
                "invoice_id": deal.invoice_id,
                "_id": {"$ne": deal.id},
                "status": {"$ne": DealStatus.REJECTED.value}
            }
        )
        return [Deal(**doc) for doc in docs]

    async def _has_notice(self, deal: Deal, content: str) -> bool:
        thread = await self.messages.list_for_deal(deal.id)
        return any(m.is_system and m.content == content for m in thread)

    async def _live_deals_of_buyer(self, invoice_id: str, buyer_id: str) -> List[Deal]:
        docs = await self.store.find(
            DEALS,
            {
                "invoice_id": invoice_id,
                "buyer_id": buyer_id,
                "status": {"$ne": DealStatus.REJECTED.value}
            },
            sort=[("started_at", ASCENDING), ("_id", ASCENDING)]
        )
        return [Deal(**doc) for doc in docs]

    async def _reject_pending(self, deal: Deal) -> None:
        """Withdraw a deal this session just created, if it is still pending."""
        try:
            await self.store.update(
                DEALS,
                deal.id,
                {"status": DealStatus.REJECTED.value, "version": deal.version + 1},
                expected={"status": DealStatus.PENDING.value}
            )
        except ConflictError:
            # Already moved by an accept on the same invoice
            logger.warning("Deal %s was no longer pending when withdrawn", deal.id)
