"""
One-time bootstrap data.

Kept apart from live records: the market aggregator starts from
``default_market_snapshot()``, and ``seed_demo_data`` writes a small demo
marketplace only when explicitly asked to (``SEED_DEMO_DATA``).
"""

import logging
from datetime import date, timedelta

from marketplace.core.exceptions import NotFound
from marketplace.db.store import DEALS, INVOICES, MESSAGES, USERS, RecordStore
from marketplace.models.base import utcnow
from marketplace.models.deal import Deal, DealStatus
from marketplace.models.invoice import Invoice, InvoiceStatus
from marketplace.models.market import MarketStatistics
from marketplace.models.message import Message
from marketplace.models.user import User, UserRole

logger = logging.getLogger(__name__)

DEMO_SELLER_ID = "demo-seller"
DEMO_BUYER_ID = "demo-buyer"
DEMO_ADMIN_ID = "demo-admin"


def default_market_snapshot() -> MarketStatistics:
    return MarketStatistics(
        total_volume=154_000_000,
        completed_deals=124,
        average_discount_rate=4.8,
        avg_funding_days=2.5,
        active_users=142,
        accident_rate=0.2
    )


async def seed_demo_data(store: RecordStore) -> bool:
    """Insert the demo marketplace. Returns False if it is already there."""
    try:
        await store.get(USERS, DEMO_SELLER_ID)
        logger.info("Demo data already present, skipping seed")
        return False
    except NotFound:
        pass

    now = utcnow()
    users = [
        User(
            id=DEMO_SELLER_ID,
            name="Taro Tanaka",
            company_name="Tech Solutions Inc.",
            role=UserRole.SELLER
        ),
        User(
            id=DEMO_BUYER_ID,
            name="Kenta Tanaka",
            company_name="Tanaka Investment Co.",
            role=UserRole.BUYER,
            budget=50_000_000,
            appeal_point="Mainly construction receivables, open to other sectors."
        ),
        User(
            id=DEMO_ADMIN_ID,
            name="Marketplace Admin",
            company_name="Marketplace Operations",
            role=UserRole.ADMIN
        ),
    ]
    for user in users:
        await store.insert(USERS, user.to_document())

    negotiating = Invoice(
        seller_id=DEMO_SELLER_ID,
        amount=1_000_000,
        due_date=date.today() + timedelta(days=60),
        industry="Construction",
        company_credit="Stable company, 20 years in business. Prime contractor is a major general contractor.",
        requested_amount=950_000,
        status=InvoiceStatus.NEGOTIATING,
        created_at=now - timedelta(days=2),
        updated_at=now - timedelta(days=1)
    )
    listed = Invoice(
        seller_id=DEMO_SELLER_ID,
        amount=500_000,
        due_date=date.today() + timedelta(days=75),
        industry="IT & Telecom",
        company_credit="Young venture, no late payments in the last three cycles.",
        requested_amount=470_000,
        created_at=now - timedelta(days=1),
        updated_at=now - timedelta(days=1)
    )

    deal = Deal(
        invoice_id=negotiating.id,
        buyer_id=DEMO_BUYER_ID,
        seller_id=DEMO_SELLER_ID,
        status=DealStatus.NEGOTIATING,
        initial_offer_amount=950_000,
        current_amount=950_000,
        started_at=now - timedelta(days=1),
        last_activity_at=now - timedelta(hours=1)
    )
    negotiating.accepted_deal_id = deal.id

    await store.insert(INVOICES, negotiating.to_document())
    await store.insert(INVOICES, listed.to_document())
    await store.insert(DEALS, deal.to_document())
    await store.insert(MESSAGES, Message(
        deal_id=deal.id,
        sender_id=DEMO_BUYER_ID,
        receiver_id=DEMO_SELLER_ID,
        content="Nice to meet you. I'm interested in this invoice. Would 950,000 work for you?",
        timestamp=now - timedelta(days=1)
    ).to_document())

    logger.info("Seeded demo marketplace: %d users, 2 invoices, 1 deal", len(users))
    return True
