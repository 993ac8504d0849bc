from typing import List, Optional
from fastapi import APIRouter, Depends, status
from marketplace.api.deps import get_marketplace
from marketplace.core.auth import Principal, get_current_principal
from marketplace.schemas.deal import AmountRevision, DealResponse, OfferCreate
from marketplace.schemas.message import MessageCreate, MessageResponse
from marketplace.services.marketplace_service import MarketplaceService

router = APIRouter()

@router.post("/", response_model=DealResponse, status_code=status.HTTP_201_CREATED)
async def submit_offer(
    offer: OfferCreate,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Make an offer on an open invoice"""
    return await service.submit_offer(principal, offer.invoice_id, offer.amount, offer.message)

@router.get("/mine", response_model=List[DealResponse])
async def list_my_deals(
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Deals the current user takes part in"""
    return await service.list_my_deals(principal)

@router.get("/{deal_id}", response_model=DealResponse)
async def get_deal(
    deal_id: str,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Get a deal by ID"""
    return await service.get_deal(principal, deal_id)

@router.post("/{deal_id}/accept", response_model=DealResponse)
async def accept_offer(
    deal_id: str,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Accept an offer and reject its competitors"""
    return await service.accept_offer(principal, deal_id)

@router.post("/{deal_id}/complete", response_model=DealResponse)
async def complete_deal(
    deal_id: str,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Close the deal as agreed"""
    return await service.complete_deal(principal, deal_id)

@router.patch("/{deal_id}/amount", response_model=DealResponse)
async def revise_amount(
    deal_id: str,
    request: AmountRevision,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Propose a new price"""
    return await service.revise_amount(principal, deal_id, request.amount)

@router.get("/{deal_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    deal_id: str,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Chat thread of a deal"""
    return await service.list_messages(principal, deal_id)

@router.post("/{deal_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    deal_id: str,
    request: MessageCreate,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Send a chat message to the other party"""
    return await service.send_message(principal, deal_id, request.content)
