from fastapi import APIRouter, Depends
from marketplace.api.deps import get_marketplace
from marketplace.models.market import MarketStatistics
from marketplace.services.marketplace_service import MarketplaceService

router = APIRouter()

@router.get("/stats", response_model=MarketStatistics)
async def get_market_stats(service: MarketplaceService = Depends(get_marketplace)):
    """Ticker statistics"""
    return service.market_snapshot()
