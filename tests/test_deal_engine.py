"""Tests for the deal lifecycle: offers, ranking, acceptance, completion."""
import asyncio

import pytest

from marketplace.core.exceptions import (
    DuplicateOffer,
    Forbidden,
    InvalidTransition,
    InvoiceLocked,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from marketplace.db.store import DEALS, INVOICES, MESSAGES
from marketplace.models.deal import ACTIVE_DEAL_STATUSES, DealStatus
from marketplace.models.invoice import InvoiceStatus
from marketplace.models.message import SYSTEM_SENDER_ID
from marketplace.services.deal_engine import rank_offers


def active_count(store, invoice_id):
    return store.count(DEALS, invoice_id=invoice_id, status={"$in": ACTIVE_DEAL_STATUSES})


@pytest.mark.asyncio
class TestSubmitOffer:

    async def test_creates_pending_deal_and_seed_message(self, engine, messaging, open_invoice, seller, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 950_000, "Interested at 950k")

        assert deal.status == DealStatus.PENDING
        assert deal.initial_offer_amount == deal.current_amount == 950_000
        assert deal.seller_id == seller.id

        thread = await messaging.list_for_deal(deal.id)
        assert len(thread) == 1
        assert thread[0].sender_id == buyers[0].id
        assert thread[0].receiver_id == seller.id
        assert thread[0].content == "Interested at 950k"

    async def test_invoice_stays_open_while_offers_accumulate(self, engine, invoice_repo, open_invoice, buyers):
        for buyer in buyers:
            await engine.submit_offer(open_invoice.id, buyer.id, 900_000, "")

        invoice = await invoice_repo.get(open_invoice.id)
        assert invoice.status == InvoiceStatus.OPEN
        assert len(await engine.list_for_invoice(open_invoice.id)) == 3

    async def test_blank_message_gets_default_text(self, engine, messaging, open_invoice, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "  ")

        thread = await messaging.list_for_deal(deal.id)
        assert thread[0].content == "Offer submitted: 900,000"

    async def test_duplicate_submission_returns_existing_deal(self, engine, store, open_invoice, buyers):
        first = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "first")
        second = await engine.submit_offer(open_invoice.id, buyers[0].id, 950_000, "second")

        assert second.id == first.id
        assert second.current_amount == 900_000
        assert store.count(DEALS, invoice_id=open_invoice.id) == 1
        assert store.count(MESSAGES, deal_id=first.id) == 1

    async def test_strict_duplicate_submission_raises(self, engine, open_invoice, buyers):
        await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")

        with pytest.raises(DuplicateOffer):
            await engine.submit_offer(open_invoice.id, buyers[0].id, 950_000, "", strict=True)

    async def test_concurrent_duplicates_converge_to_one_live_deal(self, engine, store, open_invoice, buyers):
        results = await asyncio.gather(
            engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "a"),
            engine.submit_offer(open_invoice.id, buyers[0].id, 910_000, "b"),
        )

        assert results[0].id == results[1].id
        live = [
            doc for doc in await store.find(DEALS, {"invoice_id": open_invoice.id})
            if doc["status"] != "rejected"
        ]
        assert len(live) == 1

    async def test_offer_on_locked_invoice_fails(self, engine, invoice_repo, open_invoice, buyers):
        await invoice_repo.transition_status(open_invoice.id, InvoiceStatus.NEGOTIATING)

        with pytest.raises(InvoiceLocked):
            await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")

    async def test_seller_cannot_bid_on_own_invoice(self, engine, open_invoice, seller):
        with pytest.raises(Forbidden):
            await engine.submit_offer(open_invoice.id, seller.id, 900_000, "")

    @pytest.mark.parametrize("amount", [0, -1, 1_000_001])
    async def test_offer_amount_bounds(self, engine, open_invoice, buyers, amount):
        with pytest.raises(ValidationError):
            await engine.submit_offer(open_invoice.id, buyers[0].id, amount, "")

    async def test_offer_on_missing_invoice(self, engine, buyers):
        with pytest.raises(NotFound):
            await engine.submit_offer("missing", buyers[0].id, 900_000, "")


@pytest.mark.asyncio
class TestRanking:

    async def test_highest_amount_first_ties_to_earliest(self, engine, open_invoice, buyers):
        a = await engine.submit_offer(open_invoice.id, buyers[0].id, 100_000, "A")
        b = await engine.submit_offer(open_invoice.id, buyers[1].id, 150_000, "B")
        c = await engine.submit_offer(open_invoice.id, buyers[2].id, 150_000, "C")

        ranked = await engine.list_for_invoice(open_invoice.id)

        assert [deal.id for deal in ranked] == [b.id, c.id, a.id]

    async def test_revision_moves_offer_to_top(self, engine, open_invoice, buyers):
        a = await engine.submit_offer(open_invoice.id, buyers[0].id, 100_000, "A")
        b = await engine.submit_offer(open_invoice.id, buyers[1].id, 150_000, "B")

        await engine.revise_amount(a.id, buyers[0].id, 200_000)
        ranked = await engine.list_for_invoice(open_invoice.id)

        assert [deal.id for deal in ranked] == [a.id, b.id]


@pytest.mark.asyncio
class TestAcceptOffer:

    async def test_accept_rejects_every_sibling(self, engine, store, invoice_repo, open_invoice, seller, buyers):
        deals = [
            await engine.submit_offer(open_invoice.id, buyer.id, 900_000 + i, "")
            for i, buyer in enumerate(buyers)
        ]

        accepted = await engine.accept_offer(deals[1].id, seller.id)

        assert accepted.status == DealStatus.NEGOTIATING
        statuses = {deal.id: (await engine.get(deal.id)).status for deal in deals}
        assert statuses == {
            deals[0].id: DealStatus.REJECTED,
            deals[1].id: DealStatus.NEGOTIATING,
            deals[2].id: DealStatus.REJECTED,
        }
        invoice = await invoice_repo.get(open_invoice.id)
        assert invoice.status == InvoiceStatus.NEGOTIATING
        assert invoice.accepted_deal_id == deals[1].id
        assert active_count(store, open_invoice.id) == 1

    async def test_accept_posts_system_notice(self, engine, messaging, open_invoice, seller, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "hi")

        await engine.accept_offer(deal.id, seller.id)

        thread = await messaging.list_for_deal(deal.id)
        assert [m.sender_id for m in thread] == [buyers[0].id, SYSTEM_SENDER_ID]

    async def test_only_invoice_seller_can_accept(self, engine, open_invoice, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")

        with pytest.raises(Forbidden):
            await engine.accept_offer(deal.id, buyers[1].id)

    async def test_rejected_deal_cannot_be_accepted(self, engine, open_invoice, seller, buyers):
        a = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")
        b = await engine.submit_offer(open_invoice.id, buyers[1].id, 910_000, "")
        await engine.accept_offer(a.id, seller.id)

        with pytest.raises(InvalidTransition):
            await engine.accept_offer(b.id, seller.id)

    async def test_accept_twice_fails(self, engine, open_invoice, seller, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")
        await engine.accept_offer(deal.id, seller.id)

        with pytest.raises(InvalidTransition):
            await engine.accept_offer(deal.id, seller.id)

    async def test_no_offers_after_acceptance(self, engine, open_invoice, seller, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")
        await engine.accept_offer(deal.id, seller.id)

        with pytest.raises(InvoiceLocked):
            await engine.submit_offer(open_invoice.id, buyers[1].id, 990_000, "")

    async def test_rejected_buyer_cannot_resubmit(self, engine, open_invoice, seller, buyers):
        a = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")
        await engine.submit_offer(open_invoice.id, buyers[1].id, 910_000, "")
        await engine.accept_offer(a.id, seller.id)

        with pytest.raises(InvoiceLocked):
            await engine.submit_offer(open_invoice.id, buyers[1].id, 999_000, "")

    async def test_concurrent_accepts_leave_one_negotiation(self, engine, store, invoice_repo, open_invoice, seller, buyers):
        deals = [
            await engine.submit_offer(open_invoice.id, buyer.id, 900_000, "")
            for buyer in buyers
        ]

        results = await asyncio.gather(
            *(engine.accept_offer(deal.id, seller.id) for deal in deals),
            return_exceptions=True
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert all(isinstance(f, InvalidTransition) for f in failures)
        assert active_count(store, open_invoice.id) == 1
        assert store.count(DEALS, invoice_id=open_invoice.id, status="rejected") == 2
        invoice = await invoice_repo.get(open_invoice.id)
        assert invoice.accepted_deal_id == winners[0].id

    async def test_accept_racing_submit_never_leaves_pending_offers(self, engine, store, open_invoice, seller, buyers):
        first = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")

        results = await asyncio.gather(
            engine.accept_offer(first.id, seller.id),
            engine.submit_offer(open_invoice.id, buyers[1].id, 950_000, "late"),
            engine.submit_offer(open_invoice.id, buyers[2].id, 960_000, "later"),
            return_exceptions=True
        )

        assert not isinstance(results[0], Exception)
        for result in results[1:]:
            assert not isinstance(result, Exception) or isinstance(result, InvoiceLocked)
        assert store.count(DEALS, invoice_id=open_invoice.id, status="pending") == 0
        assert active_count(store, open_invoice.id) == 1


@pytest.mark.asyncio
class TestCompleteDeal:

    async def _negotiating(self, engine, invoice, seller, buyer, amount=950_000):
        deal = await engine.submit_offer(invoice.id, buyer.id, amount, "")
        return await engine.accept_offer(deal.id, seller.id)

    async def test_complete_sells_invoice_and_updates_market(self, engine, invoice_repo, market, open_invoice, seller, buyers):
        deal = await self._negotiating(engine, open_invoice, seller, buyers[0])

        done = await engine.complete_deal(deal.id, buyers[0].id)

        assert done.status == DealStatus.AGREED
        assert (await invoice_repo.get(open_invoice.id)).status == InvoiceStatus.SOLD
        stats = market.snapshot()
        assert stats.completed_deals == 125
        assert stats.average_discount_rate == 4.8
        assert stats.total_volume == 154_000_000 + 950_000

    async def test_complete_appends_system_message(self, engine, messaging, open_invoice, seller, buyers):
        deal = await self._negotiating(engine, open_invoice, seller, buyers[0])

        await engine.complete_deal(deal.id, seller.id)

        thread = await messaging.list_for_deal(deal.id)
        assert thread[-1].sender_id == SYSTEM_SENDER_ID
        assert thread[-1].content == "Deal completed. Congratulations!"

    async def test_non_party_cannot_complete(self, engine, open_invoice, seller, buyers):
        deal = await self._negotiating(engine, open_invoice, seller, buyers[0])

        with pytest.raises(Forbidden):
            await engine.complete_deal(deal.id, buyers[1].id)

    async def test_pending_deal_cannot_complete(self, engine, open_invoice, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")

        with pytest.raises(InvalidTransition):
            await engine.complete_deal(deal.id, buyers[0].id)

    async def test_agreed_is_terminal(self, engine, open_invoice, seller, buyers):
        deal = await self._negotiating(engine, open_invoice, seller, buyers[0])
        await engine.complete_deal(deal.id, seller.id)

        with pytest.raises(InvalidTransition):
            await engine.complete_deal(deal.id, buyers[0].id)
        with pytest.raises(InvalidTransition):
            await engine.revise_amount(deal.id, buyers[0].id, 800_000)

    async def test_double_completion_counts_once(self, engine, market, open_invoice, seller, buyers):
        deal = await self._negotiating(engine, open_invoice, seller, buyers[0])

        results = await asyncio.gather(
            engine.complete_deal(deal.id, seller.id),
            engine.complete_deal(deal.id, buyers[0].id),
            return_exceptions=True
        )

        assert sum(1 for r in results if isinstance(r, InvalidTransition)) == 1
        assert market.snapshot().completed_deals == 125

    async def test_completion_uses_revised_amount(self, engine, market, open_invoice, seller, buyers):
        deal = await self._negotiating(engine, open_invoice, seller, buyers[0], amount=900_000)
        await engine.revise_amount(deal.id, seller.id, 980_000)

        await engine.complete_deal(deal.id, buyers[0].id)

        assert market.snapshot().total_volume == 154_000_000 + 980_000


@pytest.mark.asyncio
class TestReviseAmount:

    async def test_seller_cannot_revise_pending_offer(self, engine, open_invoice, seller, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")

        with pytest.raises(Forbidden):
            await engine.revise_amount(deal.id, seller.id, 950_000)

    async def test_revision_keeps_initial_amount(self, engine, open_invoice, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")

        revised = await engine.revise_amount(deal.id, buyers[0].id, 920_000)

        assert revised.initial_offer_amount == 900_000
        assert revised.current_amount == 920_000

    async def test_revision_bounded_by_face_value(self, engine, open_invoice, buyers):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")

        with pytest.raises(ValidationError):
            await engine.revise_amount(deal.id, buyers[0].id, 1_000_001)


@pytest.mark.asyncio
async def test_listing_by_party(engine, store, invoice_repo, open_invoice, seller, buyers, invoice_payload):
    other = await invoice_repo.create(seller.id, invoice_payload())
    a = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")
    b = await engine.submit_offer(other.id, buyers[0].id, 400_000, "")
    await engine.submit_offer(other.id, buyers[1].id, 410_000, "")

    mine = await engine.list_for_buyer(buyers[0].id)
    assert [d.id for d in mine] == [b.id, a.id]
    assert len(await engine.list_for_seller(seller.id)) == 3
    assert await engine.list_for_seller("nobody") == []
    assert store.count(INVOICES) == 2


def test_rank_offers_handles_empty_list():
    assert rank_offers([]) == []


def is_promotion(table, fields):
    return table == DEALS and fields.get("status") == DealStatus.NEGOTIATING.value


def is_sibling_rejection(table, fields):
    return table == DEALS and fields.get("status") == DealStatus.REJECTED.value


def is_sale(table, fields):
    return table == INVOICES and fields.get("status") == InvoiceStatus.SOLD.value


@pytest.mark.asyncio
class TestRecovery:

    async def test_accept_resumes_after_failed_promotion(self, engine, store, invoice_repo, messaging, open_invoice, seller, buyers, fail_update_once):
        a = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")
        b = await engine.submit_offer(open_invoice.id, buyers[1].id, 910_000, "")
        fail_update_once(is_promotion)

        with pytest.raises(StoreUnavailable):
            await engine.accept_offer(a.id, seller.id)
        assert (await invoice_repo.get(open_invoice.id)).status == InvoiceStatus.NEGOTIATING
        assert (await engine.get(a.id)).status == DealStatus.PENDING

        accepted = await engine.accept_offer(a.id, seller.id)

        assert accepted.status == DealStatus.NEGOTIATING
        assert (await engine.get(b.id)).status == DealStatus.REJECTED
        assert active_count(store, open_invoice.id) == 1
        notices = [m for m in await messaging.list_for_deal(a.id) if m.is_system]
        assert len(notices) == 1

    async def test_accept_resumes_after_failed_sibling_rejection(self, engine, store, open_invoice, seller, buyers, fail_update_once):
        a = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")
        b = await engine.submit_offer(open_invoice.id, buyers[1].id, 910_000, "")
        fail_update_once(is_sibling_rejection)

        with pytest.raises(StoreUnavailable):
            await engine.accept_offer(a.id, seller.id)
        assert (await engine.get(b.id)).status == DealStatus.PENDING

        await engine.accept_offer(a.id, seller.id)

        assert (await engine.get(b.id)).status == DealStatus.REJECTED
        assert store.count(DEALS, invoice_id=open_invoice.id, status="pending") == 0
        with pytest.raises(InvalidTransition):
            await engine.accept_offer(a.id, seller.id)

    async def test_claim_of_withdrawn_deal_passes_to_next_accept(self, engine, store, invoice_repo, open_invoice, seller, buyers):
        a = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")
        b = await engine.submit_offer(open_invoice.id, buyers[1].id, 910_000, "")
        # invoice claimed for a, then a withdrawn before promotion
        await invoice_repo.transition_status(open_invoice.id, InvoiceStatus.NEGOTIATING, accepted_deal_id=a.id)
        await store.update(DEALS, a.id, {"status": DealStatus.REJECTED.value})

        with pytest.raises(InvalidTransition):
            await engine.accept_offer(a.id, seller.id)
        accepted = await engine.accept_offer(b.id, seller.id)

        assert accepted.status == DealStatus.NEGOTIATING
        invoice = await invoice_repo.get(open_invoice.id)
        assert invoice.status == InvoiceStatus.NEGOTIATING
        assert invoice.accepted_deal_id == b.id
        assert active_count(store, open_invoice.id) == 1

    async def test_live_claim_is_not_taken_over(self, engine, open_invoice, seller, buyers, fail_update_once):
        a = await engine.submit_offer(open_invoice.id, buyers[0].id, 900_000, "")
        b = await engine.submit_offer(open_invoice.id, buyers[1].id, 910_000, "")
        fail_update_once(is_promotion)
        with pytest.raises(StoreUnavailable):
            await engine.accept_offer(a.id, seller.id)

        with pytest.raises(InvalidTransition):
            await engine.accept_offer(b.id, seller.id)

    async def test_complete_resumes_after_failed_sale(self, engine, invoice_repo, messaging, market, open_invoice, seller, buyers, fail_update_once):
        deal = await engine.submit_offer(open_invoice.id, buyers[0].id, 950_000, "")
        await engine.accept_offer(deal.id, seller.id)
        fail_update_once(is_sale)

        with pytest.raises(StoreUnavailable):
            await engine.complete_deal(deal.id, buyers[0].id)
        assert (await engine.get(deal.id)).status == DealStatus.AGREED
        assert (await invoice_repo.get(open_invoice.id)).status == InvoiceStatus.NEGOTIATING
        assert market.snapshot().completed_deals == 124

        done = await engine.complete_deal(deal.id, seller.id)

        assert done.status == DealStatus.AGREED
        assert (await invoice_repo.get(open_invoice.id)).status == InvoiceStatus.SOLD
        assert market.snapshot().completed_deals == 125
        thread = await messaging.list_for_deal(deal.id)
        assert [m.content for m in thread].count("Deal completed. Congratulations!") == 1
        with pytest.raises(InvalidTransition):
            await engine.complete_deal(deal.id, buyers[0].id)
        assert market.snapshot().completed_deals == 125
