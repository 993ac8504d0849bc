from fastapi import Depends

from marketplace.db.session import get_store
from marketplace.db.store import RecordStore
from marketplace.services.market import MarketAggregator
from marketplace.services.marketplace_service import MarketplaceService
from marketplace.services.seed import default_market_snapshot

# Process-wide statistics shared by every request
market = MarketAggregator(default_market_snapshot())


async def get_marketplace(store: RecordStore = Depends(get_store)) -> MarketplaceService:
    return MarketplaceService(store, market)
